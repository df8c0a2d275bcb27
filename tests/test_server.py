"""Wire-level tests against a live server, speaking the protocol by hand."""

import socket
import threading
import time

import pytest

from conftest import recv_all
from server_app.server import Server


class TestDir:

    def test_lists_regular_files(self, shared_folder, raw_connection):
        (shared_folder / "a.txt").write_bytes(b"a")
        (shared_folder / "b c.txt").write_bytes(b"b")
        (shared_folder / "subdir").mkdir()
        raw_connection.sendall(b"DIR\n")
        header, *names = recv_all(raw_connection).decode("utf-8").split("\n")
        assert header == "OK<|>2"
        assert names[-1] == ""
        assert sorted(names[:-1]) == ["a.txt", "b c.txt"]

    def test_empty_folder(self, raw_connection):
        raw_connection.sendall(b"DIR\n")
        assert recv_all(raw_connection) == b"OK<|>0\n"


class TestUpload:

    def test_stores_body(self, shared_folder, raw_connection):
        raw_connection.sendall(b"UPLOAD new file.bin\n5\nhello")
        assert recv_all(raw_connection) == b"OK<|>5\n"
        assert (shared_folder / "new file.bin").read_bytes() == b"hello"

    def test_traversal_rejected(self, tmp_path, shared_folder, raw_connection):
        raw_connection.sendall(b"UPLOAD ../evil\n")
        response = recv_all(raw_connection)
        assert response.startswith(b"INVALID_NAME<|>")
        assert not (tmp_path / "evil").exists()
        assert list(shared_folder.iterdir()) == []

    def test_bad_size_line(self, shared_folder, raw_connection):
        raw_connection.sendall(b"UPLOAD x.txt\nlots\n")
        assert recv_all(raw_connection).startswith(b"PROTOCOL_ERROR<|>")
        assert list(shared_folder.iterdir()) == []

    def test_truncated_body_keeps_old_file(self, shared_folder, server):
        (shared_folder / "keep.txt").write_bytes(b"original")
        sock = socket.create_connection(server.address, timeout=5.0)
        sock.sendall(b"UPLOAD keep.txt\n100\nonly a few bytes")
        sock.shutdown(socket.SHUT_WR)
        recv_all(sock)
        sock.close()
        assert (shared_folder / "keep.txt").read_bytes() == b"original"
        assert [p.name for p in shared_folder.iterdir()] == ["keep.txt"]


class TestDownload:

    def test_sends_size_then_bytes(self, shared_folder, raw_connection):
        (shared_folder / "c.txt").write_bytes(b"xyz")
        raw_connection.sendall(b"DOWNLOAD c.txt\n")
        assert recv_all(raw_connection) == b"OK<|>3\nxyz"

    def test_missing_file_reported(self, raw_connection):
        raw_connection.sendall(b"DOWNLOAD nothing.txt\n")
        assert recv_all(raw_connection) == b"FILE_NOT_FOUND<|>File 'nothing.txt' not found.\n"

    def test_traversal_rejected(self, raw_connection):
        raw_connection.sendall(b"DOWNLOAD ../../etc/passwd\n")
        assert recv_all(raw_connection).startswith(b"INVALID_NAME<|>")


class TestMalformed:

    @pytest.mark.parametrize("request_line", [b"\n", b"LIST\n", b"UPLOAD\n", b"DIR please\n"])
    def test_protocol_error(self, raw_connection, request_line):
        raw_connection.sendall(request_line)
        assert recv_all(raw_connection).startswith(b"PROTOCOL_ERROR<|>")

    def test_immediate_close_gets_no_response(self, server, raw_connection):
        raw_connection.shutdown(socket.SHUT_WR)
        assert recv_all(raw_connection) == b""

    def test_one_command_per_connection(self, raw_connection):
        raw_connection.sendall(b"DIR\nDIR\n")
        assert recv_all(raw_connection) == b"OK<|>0\n"

    def test_stalled_peer_times_out(self, shared_folder):
        server = Server("127.0.0.1", 0, shared_folder, max_workers=2, timeout=0.3)
        server.bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        try:
            sock = socket.create_connection(server.address, timeout=5.0)
            sock.sendall(b"DI")
            started = time.monotonic()
            assert recv_all(sock).startswith(b"ERROR<|>")
            assert time.monotonic() - started < 4.0
            sock.close()
        finally:
            server.shutdown()
            thread.join(timeout=5)

    def test_pool_is_bounded(self, shared_folder):
        server = Server("127.0.0.1", 0, shared_folder, max_workers=1, timeout=1.0)
        server.bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        try:
            stalled = socket.create_connection(server.address, timeout=5.0)
            time.sleep(0.2)
            waiting = socket.create_connection(server.address, timeout=5.0)
            waiting.sendall(b"DIR\n")
            waiting.settimeout(0.4)
            with pytest.raises(socket.timeout):
                waiting.recv(1024)

            waiting.settimeout(5.0)
            assert recv_all(waiting) == b"OK<|>0\n"
            assert recv_all(stalled).startswith(b"ERROR<|>")
            waiting.close()
            stalled.close()
        finally:
            server.shutdown()
            thread.join(timeout=5)

    def test_server_survives_failed_handlers(self, server, shared_folder):
        for _ in range(3):
            sock = socket.create_connection(server.address, timeout=5.0)
            sock.sendall(b"garbage\n")
            recv_all(sock)
            sock.close()
        (shared_folder / "still.txt").write_bytes(b"up")
        sock = socket.create_connection(server.address, timeout=5.0)
        sock.sendall(b"DIR\n")
        assert recv_all(sock) == b"OK<|>1\nstill.txt\n"
        sock.close()
