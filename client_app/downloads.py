# client_app/downloads.py
import time

from client_app.client import describe_error


def add_log_to_queue(q, message_text):
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
    q.put({'type': 'log', 'message': f"[{timestamp}] {message_text}"})


def download_file_worker(client, filename, q):
    """Worker to download ONE file; the client opens its own connection per call.

    Always leaves exactly one 'download_result' on the queue.
    """
    try:
        path = client.download(filename)
    except Exception as e:
        q.put({'type': 'download_result', 'filename': filename, 'success': False,
               'message': describe_error(e)})
        add_log_to_queue(q, f"DL Worker ({filename}): Failed - {describe_error(e)}")
        return
    q.put({'type': 'download_result', 'filename': filename, 'success': True,
           'message': f"Saved to {path}"})
    add_log_to_queue(q, f"DL Worker ({filename}): Success")
