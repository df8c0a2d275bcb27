# server_app/server.py
import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor

from common.errors import FileShareError, ProtocolError
from common.file_store import FileStore
from common.protocol import (
    HOST, PORT, MAX_WORKERS, SOCKET_TIMEOUT,
    CMD_LIST_FILES, CMD_UPLOAD_FILE, CMD_DOWNLOAD_FILE,
    RESP_OK, SocketReader,
    parse_command, parse_size, format_header, status_for_error, send_all
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5  # How often the accept loop checks for shutdown


class ClientHandler:
    """Serves exactly one command on one accepted connection, then closes it."""

    def __init__(self, client_socket, client_address, store, timeout=SOCKET_TIMEOUT):
        self.client_socket = client_socket
        self.client_address = client_address
        self.store = store
        self.reader = SocketReader(client_socket)
        self.response_started = False
        self.client_socket.settimeout(timeout)
        logger.info(f"[NEW CONNECTION] {self.client_address} connected.")

    def run(self):
        try:
            line = self.reader.read_line()
            if line is None:
                logger.info(f"[{self.client_address}] Disconnected (empty message received).")
                return
            command = parse_command(line)
            logger.info(f"[{self.client_address}] RX: Command='{command.verb}', Args='{command.filename}'")

            if command.verb == CMD_LIST_FILES:
                self.handle_list_files()
            elif command.verb == CMD_UPLOAD_FILE:
                self.handle_upload_file(command.filename)
            elif command.verb == CMD_DOWNLOAD_FILE:
                self.handle_download_file(command.filename)
        except ProtocolError as e:
            logger.warning(f"[{self.client_address}] Protocol error: {e}")
            self.send_error(e)
        except FileShareError as e:
            logger.warning(f"[{self.client_address}] {type(e).__name__}: {e}")
            self.send_error(e)
        except Exception:
            logger.exception(f"[{self.client_address}] ERROR in handler")
        finally:
            self.close()

    def send_response(self, data):
        self.response_started = True
        send_all(self.client_socket, data)

    def send_error(self, exc):
        # Once bytes have gone out the only signal left is closing the connection.
        if self.response_started:
            return
        try:
            self.send_response(format_header(status_for_error(exc), str(exc)))
        except FileShareError as e:
            logger.info(f"[{self.client_address}] Could not report error: {e}")

    def close(self):
        try:
            self.client_socket.shutdown(socket.SHUT_WR)
        except OSError as e:
            logger.debug(f"[{self.client_address}] Note during socket.shutdown(SHUT_WR): {e}")
        self.client_socket.close()
        logger.info(f"[{self.client_address}] Connection fully closed.")

    def handle_list_files(self):
        files = self.store.list()
        response = [format_header(RESP_OK, len(files))]
        response.extend(f"{file_name}\n".encode() for file_name in files)
        self.send_response(b"".join(response))
        logger.info(f"[{self.client_address}] Sent file list ({len(files)} entries).")

    def handle_upload_file(self, filename):
        # Validate before consuming the body so a bad name is reported at once.
        self.store.resolve(filename)
        size_line = self.reader.read_line()
        if size_line is None:
            raise ProtocolError(f"Upload of '{filename}' is missing its size line")
        size = parse_size(size_line)
        logger.info(f"[{self.client_address}] Receiving '{filename}' ({size} bytes)...")
        written = self.store.write(filename, self.reader.iter_exact(size))
        self.send_response(format_header(RESP_OK, written))
        logger.info(f"[{self.client_address}] File '{filename}' stored ({written} bytes).")

    def handle_download_file(self, filename):
        stream = self.store.read(filename)
        with stream:
            logger.info(f"[{self.client_address}] ({filename}) FS:{stream.size}. Sending...")
            self.send_response(format_header(RESP_OK, stream.size))
            for chunk in stream:
                send_all(self.client_socket, chunk)
        logger.info(f"[{self.client_address}] File '{filename}' data sending process completed.")


class Server:
    """Accept loop handing each connection to a bounded pool of handler threads.

    When every worker is busy the loop stops accepting; pending clients wait
    in the listen backlog rather than each getting a new thread.
    """

    def __init__(self, host, port, shared_folder, max_workers=MAX_WORKERS, timeout=SOCKET_TIMEOUT):
        self.host = host
        self.port = port
        self.store = FileStore(shared_folder)
        self.max_workers = max_workers
        self.timeout = timeout
        self.server_socket = None
        self._slots = threading.BoundedSemaphore(max_workers)
        self._stopped = threading.Event()
        self._finished = threading.Event()
        self._finished.set()

    @property
    def address(self):
        return self.server_socket.getsockname()[:2]

    def bind(self):
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.server_socket.bind((self.host, self.port))
            self.server_socket.listen(self.max_workers)
        except OSError:
            self.server_socket.close()
            self.server_socket = None
            raise
        self.server_socket.settimeout(POLL_INTERVAL)
        self._finished.clear()
        return self.address

    def serve_forever(self):
        logger.info(f"[LISTENING] Server is listening on {self.address[0]}:{self.address[1]}")
        logger.info(f"Serving files from: {self.store.folder} with {self.max_workers} workers")
        try:
            with ThreadPoolExecutor(self.max_workers, thread_name_prefix="handler") as pool:
                while not self._stopped.is_set():
                    if not self._slots.acquire(timeout=POLL_INTERVAL):
                        continue
                    try:
                        client_socket, client_address = self.server_socket.accept()
                    except socket.timeout:
                        self._slots.release()
                        continue
                    except OSError as e:
                        self._slots.release()
                        if self._stopped.is_set():
                            break
                        logger.error(f"[ERROR] accept failed: {e}")
                        continue
                    handler = ClientHandler(client_socket, client_address, self.store, self.timeout)
                    future = pool.submit(handler.run)
                    future.add_done_callback(lambda _: self._slots.release())
        finally:
            self._finished.set()

    def start(self):
        try:
            self.bind()
            self.serve_forever()
        except OSError as e:
            logger.error(f"[ERROR] Could not start server: {e}")
            raise
        except KeyboardInterrupt:
            logger.info("[SHUTTING DOWN] Server is shutting down.")
        finally:
            self.server_close()

    def shutdown(self):
        """Stop accepting and wait for in-flight handlers. Call from another thread."""
        self._stopped.set()
        self._finished.wait()
        self.server_close()

    def server_close(self):
        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None
            logger.info("[CLOSED] Server socket closed.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    server = Server(HOST, PORT, ".")
    server.start()
