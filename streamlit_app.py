# streamlit_app.py
import os
import queue
import threading
import time

import streamlit as st

from client_app.client import Client, describe_error
from client_app.downloads import add_log_to_queue, download_file_worker
from common.errors import FileShareError
from common.protocol import HOST as DEFAULT_HOST, PORT as DEFAULT_PORT

MAX_CONCURRENT_DOWNLOADS = 5  # Limit simultaneous connections

st.set_page_config(page_title="File Sharer", layout="wide")

# --- Session State Initialization ---
if 'server_host' not in st.session_state:
    st.session_state.server_host = DEFAULT_HOST
if 'server_port' not in st.session_state:
    st.session_state.server_port = DEFAULT_PORT
if 'local_folder' not in st.session_state:
    st.session_state.local_folder = os.getenv("FILESHARE_LOCAL_FOLDER", os.getcwd())
if 'log_messages' not in st.session_state:
    st.session_state.log_messages = []
if 'update_queue' not in st.session_state:
    st.session_state.update_queue = queue.Queue()
if 'download_status' not in st.session_state:  # filename: {'message', 'completed', 'error'}
    st.session_state.download_status = {}
if 'active_download_threads' not in st.session_state:  # filename: thread_object
    st.session_state.active_download_threads = {}


# --- Helper Functions ---
def process_update_queue():
    while True:
        try:
            update = st.session_state.update_queue.get_nowait()
        except queue.Empty:
            break
        if update['type'] == 'log':
            if len(st.session_state.log_messages) > 20:
                st.session_state.log_messages.pop()
            st.session_state.log_messages.insert(0, update['message'])
        elif update['type'] == 'download_result':
            filename = update['filename']
            st.session_state.download_status[filename] = {
                'message': update['message'],
                'completed': update['success'],
                'error': not update['success'],
            }
            st.session_state.active_download_threads.pop(filename, None)


def show_failure(action, exc):
    st.error(f"{action} failed. {describe_error(exc)}")
    add_log_to_queue(st.session_state.update_queue, f"{action} failed: {describe_error(exc)}")


# --- UI ---
st.title("📁 File Sharer")
process_update_queue()

with st.sidebar:
    st.header("Connection")
    st.session_state.server_host = st.text_input("Server Host", value=st.session_state.server_host)
    st.session_state.server_port = st.number_input("Server Port", value=int(st.session_state.server_port),
                                                   min_value=1, max_value=65535, step=1)

    client = Client(st.session_state.server_host, int(st.session_state.server_port), st.session_state.local_folder)

    st.markdown("---")
    st.subheader("📂 Shared Folder")
    new_folder = st.text_input("Shared Folder Path", value=str(st.session_state.local_folder))
    if st.button("Change Shared Folder"):
        try:
            client.set_shared_folder(new_folder)
        except FileShareError as e:
            show_failure("Changing folder", e)
        if str(client.local_folder) != str(st.session_state.local_folder):
            st.session_state.local_folder = str(client.local_folder)
            add_log_to_queue(st.session_state.update_queue, f"Local folder changed to {client.local_folder}")

    st.markdown("---")
    st.subheader("📜 Client Log")
    log_container = st.container(height=200)
    with log_container:
        for msg_text in st.session_state.log_messages:
            st.caption(msg_text)

col1, col2 = st.columns(2)
with col1:
    st.subheader("Your Files")
    try:
        local_files = sorted(client.list_local_files())
    except FileShareError as e:
        local_files = []
        show_failure("Listing local files", e)

    if not local_files:
        st.info("No files in the local folder.")
    else:
        selected_local = st.selectbox("Select a file to upload:", options=local_files, key="local_choice")
        if st.button("⬆️ Upload", key="upload"):
            try:
                size = client.upload(selected_local)
                st.success(f"{selected_local} has been uploaded to the server ({size} bytes).")
                add_log_to_queue(st.session_state.update_queue, f"Uploaded {selected_local}")
            except FileShareError as e:
                show_failure("Upload", e)

with col2:
    st.subheader("Server Files")
    st.button("🔄 Refresh File Lists")
    try:
        remote_files = sorted(client.list_remote_files())
    except FileShareError as e:
        remote_files = []
        show_failure("Listing server files", e)

    if not remote_files:
        st.info("No files on server or server unreachable.")
    else:
        selected_remote = st.multiselect("Select files to download:", options=remote_files, key="remote_choice")
        if selected_remote and st.button(f"⬇️ Download Selected ({len(selected_remote)})"):
            active_thread_count = sum(1 for t in st.session_state.active_download_threads.values() if t.is_alive())
            for filename in selected_remote:
                thread = st.session_state.active_download_threads.get(filename)
                if thread is not None and thread.is_alive():
                    add_log_to_queue(st.session_state.update_queue,
                                     f"Skipping {filename}: download already in progress.")
                    continue
                if active_thread_count >= MAX_CONCURRENT_DOWNLOADS:
                    msg = f"Max concurrent downloads ({MAX_CONCURRENT_DOWNLOADS}) reached. {filename} not started."
                    add_log_to_queue(st.session_state.update_queue, msg)
                    st.warning(msg)
                    continue

                st.session_state.download_status[filename] = {
                    'message': 'Downloading...', 'completed': False, 'error': False
                }
                thread = threading.Thread(
                    target=download_file_worker,
                    args=(client, filename, st.session_state.update_queue),
                    daemon=True,
                )
                st.session_state.active_download_threads[filename] = thread
                thread.start()
                active_thread_count += 1
            st.rerun()

    for filename_key, status in st.session_state.download_status.items():
        if status.get('error'):
            st.error(f"**{filename_key}**: {status['message']}", icon="🔥")
        elif status.get('completed'):
            st.success(f"**{filename_key}**: {status['message']}", icon="✅")
        else:
            st.caption(f"{filename_key}: {status['message']}")

# Rerun while downloads are running so their results show up
if any(t.is_alive() for t in st.session_state.active_download_threads.values()):
    time.sleep(0.1)
    st.rerun()
