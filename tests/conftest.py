"""Shared fixtures: temporary folders and a live server on a free port."""

import socket
import threading

import pytest

from client_app.client import Client
from server_app.server import Server


@pytest.fixture
def shared_folder(tmp_path):
    folder = tmp_path / "shared"
    folder.mkdir()
    return folder


@pytest.fixture
def local_folder(tmp_path):
    folder = tmp_path / "local"
    folder.mkdir()
    return folder


@pytest.fixture
def server(shared_folder):
    server = Server("127.0.0.1", 0, shared_folder, max_workers=8, timeout=5.0)
    server.bind()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    thread.join(timeout=5)


@pytest.fixture
def client(server, local_folder):
    host, port = server.address
    return Client(host, port, local_folder, timeout=5.0)


@pytest.fixture
def raw_connection(server):
    """A plain socket to the server, for speaking the wire protocol by hand."""
    sock = socket.create_connection(server.address, timeout=5.0)
    yield sock
    sock.close()


def recv_all(sock):
    """Read until the server closes the connection."""
    chunks = []
    while True:
        data = sock.recv(65536)
        if not data:
            return b"".join(chunks)
        chunks.append(data)


@pytest.fixture
def scripted_server():
    """Start a one-shot server that reads one request line and replies with fixed bytes.

    Returns a function taking the reply and giving back the (host, port) to dial.
    """
    listeners = []
    threads = []

    def start(reply):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        listener.settimeout(5.0)
        listeners.append(listener)

        def serve():
            conn, _ = listener.accept()
            with conn:
                conn.settimeout(5.0)
                request = b""
                while b"\n" not in request:
                    data = conn.recv(1024)
                    if not data:
                        break
                    request += data
                conn.sendall(reply)

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        threads.append(thread)
        return listener.getsockname()

    yield start
    for thread in threads:
        thread.join(timeout=5)
    for listener in listeners:
        listener.close()
