# common/protocol.py
import os
import socket
from typing import NamedTuple, Optional

from common.errors import (
    IOFailure, ConnectionFailure,
    NotFound, InvalidName, ProtocolError
)

HOST = os.getenv("FILESHARE_HOST", '127.0.0.1')
PORT = int(os.getenv("FILESHARE_PORT", 1234))
MAX_WORKERS = int(os.getenv("FILESHARE_MAX_WORKERS", 16))
SOCKET_TIMEOUT = float(os.getenv("FILESHARE_TIMEOUT", 30.0))
BUFFER_SIZE = 4096
CHUNK_SIZE = 1024 * 1024  # 1MB
MAX_LINE_LENGTH = 4096  # bytes before the terminating newline
ENCODING = "utf-8"

# Commands
CMD_LIST_FILES = "DIR"
CMD_UPLOAD_FILE = "UPLOAD"
CMD_DOWNLOAD_FILE = "DOWNLOAD"
COMMANDS = (CMD_LIST_FILES, CMD_UPLOAD_FILE, CMD_DOWNLOAD_FILE)

# Server Responses
RESP_OK = "OK"  # Followed by the entry count (DIR) or the byte count
RESP_ERROR = "ERROR"
RESP_FILE_NOT_FOUND = "FILE_NOT_FOUND"
RESP_INVALID_NAME = "INVALID_NAME"
RESP_PROTOCOL_ERROR = "PROTOCOL_ERROR"

# Separator for response headers
MSG_SEPARATOR = "<|>"  # Filenames may contain spaces, so not a space

ERROR_STATUSES = {
    NotFound: RESP_FILE_NOT_FOUND,
    InvalidName: RESP_INVALID_NAME,
    ProtocolError: RESP_PROTOCOL_ERROR,
    IOFailure: RESP_ERROR,
}


class Command(NamedTuple):
    verb: str
    filename: Optional[str] = None


def parse_command(line):
    """Parse one request line (without its newline) into a Command.

    The line is split on the first space only; whatever follows is the
    filename, kept verbatim so names with spaces survive.
    """
    if not line:
        raise ProtocolError("Empty command line")
    verb, sep, argument = line.partition(" ")
    if verb not in COMMANDS:
        raise ProtocolError(f"Unknown command: {verb!r}")
    if verb == CMD_LIST_FILES:
        if sep:
            raise ProtocolError(f"{verb} takes no argument")
        return Command(verb)
    if not argument:
        raise ProtocolError(f"{verb} requires a filename")
    return Command(verb, argument)


def encode_command(command):
    if command.filename is None:
        line = command.verb
    else:
        line = f"{command.verb} {command.filename}"
    if "\n" in line:
        raise InvalidName(f"Filename cannot contain a newline: {command.filename!r}")
    return f"{line}\n".encode(ENCODING)


def format_header(status, payload=""):
    return f"{status}{MSG_SEPARATOR}{payload}\n".encode(ENCODING)


def parse_header(line):
    status, sep, payload = line.partition(MSG_SEPARATOR)
    if not sep:
        raise ProtocolError(f"Malformed response header: {line!r}")
    return status, payload


def parse_size(text):
    try:
        size = int(text)
    except ValueError:
        raise ProtocolError(f"Invalid size: {text!r}") from None
    if size < 0:
        raise ProtocolError(f"Negative size: {size}")
    return size


def status_for_error(exc):
    for error_class, status in ERROR_STATUSES.items():
        if isinstance(exc, error_class):
            return status
    return RESP_ERROR


def error_for_status(status, message):
    """Build the exception a failure status header stands for."""
    for error_class, error_status in ERROR_STATUSES.items():
        if error_status == status:
            return error_class(message)
    return ProtocolError(f"Unknown response status {status!r}: {message}")


def check_header(line):
    """Return the payload of an OK header, raise the reported failure otherwise."""
    if line is None:
        raise ConnectionFailure("Connection closed (while expecting response header).")
    status, payload = parse_header(line)
    if status != RESP_OK:
        raise error_for_status(status, payload)
    return payload


class SocketReader:
    """Buffered reader for line headers followed by raw, counted bytes."""

    def __init__(self, sock, buffer_size=BUFFER_SIZE):
        self.sock = sock
        self.buffer_size = buffer_size
        self.receive_buffer = b""  # Bytes read past the last line

    def _recv(self, size):
        try:
            return self.sock.recv(size)
        except socket.timeout:
            raise ConnectionFailure("Timed out waiting for peer.") from None
        except OSError as e:
            raise ConnectionFailure(f"Socket error: {e}") from e

    def read_line(self, max_length=MAX_LINE_LENGTH):
        """Read up to (not including) the next newline.

        Returns None if the peer closed before sending anything.
        """
        while b'\n' not in self.receive_buffer:
            if len(self.receive_buffer) > max_length:
                raise ProtocolError(f"Line exceeds {max_length} bytes")
            part = self._recv(self.buffer_size)
            if not part:
                if self.receive_buffer:
                    raise ConnectionFailure(
                        f"Connection closed. Partial line of {len(self.receive_buffer)} bytes")
                return None
            self.receive_buffer += part

        line_end_index = self.receive_buffer.find(b'\n')
        if line_end_index > max_length:
            raise ProtocolError(f"Line exceeds {max_length} bytes")
        line = self.receive_buffer[:line_end_index]
        self.receive_buffer = self.receive_buffer[line_end_index + 1:]  # Keep the rest in buffer
        try:
            return line.decode(ENCODING)
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Line is not valid UTF-8: {e}") from None

    def iter_exact(self, size):
        """Yield exactly `size` bytes, consuming the buffer before the socket."""
        remaining = size
        if self.receive_buffer and remaining:
            chunk = self.receive_buffer[:remaining]
            self.receive_buffer = self.receive_buffer[len(chunk):]
            remaining -= len(chunk)
            yield chunk
        while remaining:
            part = self._recv(min(self.buffer_size, remaining))
            if not part:
                raise ConnectionFailure(
                    f"Connection closed after {size - remaining}/{size} bytes.")
            remaining -= len(part)
            yield part

    def read_exact(self, size):
        return b"".join(self.iter_exact(size))


def send_all(sock, data):
    try:
        sock.sendall(data)
    except socket.timeout:
        raise ConnectionFailure("Timed out sending to peer.") from None
    except OSError as e:
        raise ConnectionFailure(f"Socket error: {e}") from e

