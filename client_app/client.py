# client_app/client.py
import logging
import socket
from pathlib import Path

from common.errors import ConnectionFailure, IOFailure, FileShareError
from common.file_store import FileStore
from common.protocol import (
    PORT, SOCKET_TIMEOUT,
    CMD_LIST_FILES, CMD_UPLOAD_FILE, CMD_DOWNLOAD_FILE,
    Command, SocketReader,
    encode_command, check_header, parse_size, send_all
)

logger = logging.getLogger(__name__)


class Client:
    """Drives the file sharing protocol against one server for one local folder.

    Each remote call opens its own connection, sends one command, reads the
    whole response and closes, so a Client can be reused freely.
    """

    def __init__(self, host, port=PORT, local_folder=".", timeout=SOCKET_TIMEOUT):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.local_store = FileStore(local_folder)

    @property
    def local_folder(self):
        return self.local_store.folder

    def connect(self):
        try:
            return socket.create_connection((self.host, self.port), timeout=self.timeout)
        except socket.timeout:
            raise ConnectionFailure(f"Connection to server {self.host}:{self.port} timed out.") from None
        except OSError as e:
            raise ConnectionFailure(f"Error connecting to server {self.host}:{self.port}: {e}") from e

    def list_local_files(self):
        return self.local_store.list()

    def list_remote_files(self):
        with self.connect() as client_socket:
            send_all(client_socket, encode_command(Command(CMD_LIST_FILES)))
            reader = SocketReader(client_socket)
            num_files = parse_size(check_header(reader.read_line()))
            files_list = []
            for _ in range(num_files):
                line = reader.read_line()
                if line is None:
                    raise ConnectionFailure(
                        f"Connection closed after {len(files_list)}/{num_files} file names.")
                files_list.append(line)
        logger.debug(f"Found {num_files} files on {self.host}:{self.port}.")
        return files_list

    def upload(self, filename):
        """Send a local file to the server, replacing any file of that name there."""
        stream = self.local_store.read(filename)
        with stream, self.connect() as client_socket:
            reader = SocketReader(client_socket)
            try:
                send_all(client_socket, encode_command(Command(CMD_UPLOAD_FILE, filename)))
                send_all(client_socket, f"{stream.size}\n".encode())
                for chunk in stream:
                    send_all(client_socket, chunk)
            except ConnectionFailure:
                # The server may have refused the upload early; prefer its reason.
                check_header(reader.read_line())
                raise
            written = parse_size(check_header(reader.read_line()))
        if written != stream.size:
            raise IOFailure(f"Server stored {written} of {stream.size} bytes of '{filename}'.")
        logger.info(f"File '{filename}' uploaded ({written} bytes).")
        return written

    def download(self, filename, destination=None):
        """Fetch a remote file into the local folder, or into `destination`.

        The target is only replaced once every byte has arrived; a missing
        remote file raises NotFound and leaves no local file behind.
        """
        if destination is None:
            target_store, target_name = self.local_store, filename
        else:
            destination = Path(destination)
            target_store, target_name = FileStore(destination.parent), destination.name
        target_path = target_store.resolve(target_name)

        with self.connect() as client_socket:
            send_all(client_socket, encode_command(Command(CMD_DOWNLOAD_FILE, filename)))
            reader = SocketReader(client_socket)
            file_size = parse_size(check_header(reader.read_line()))
            target_store.write(target_name, reader.iter_exact(file_size))
        logger.info(f"File '{filename}' downloaded successfully to {target_path}")
        return target_path

    def refresh(self):
        return self.list_local_files(), self.list_remote_files()

    def set_shared_folder(self, folder):
        """Switch the local folder, then re-list both sides."""
        folder = Path(folder)
        if not folder.is_dir():
            raise IOFailure(f"Local folder must be a directory: {folder}")
        self.local_store = FileStore(folder)
        logger.info(f"Local folder changed to {folder}")
        return self.refresh()


def describe_error(exc):
    """One line suitable for showing a failure to a user."""
    if isinstance(exc, FileShareError):
        return f"{type(exc).__name__}: {exc}"
    return f"Unexpected error: {exc}"
