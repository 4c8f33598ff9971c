"""
Unit tests for the Connection record and send_all().
"""

import socket

import pytest

from wthr.core.connection import Connection, close_quietly, format_address, send_all
from wthr.errors import SendError


class ChunkySocket:
    """Fake socket accepting at most `chunk` bytes per send()."""

    def __init__(self, chunk: int, fail_after: int = None, error: Exception = None):
        self.chunk = chunk
        self.fail_after = fail_after
        self.error = error or BrokenPipeError("peer gone")
        self.received = b""
        self.calls = 0

    def send(self, data) -> int:
        self.calls += 1
        if self.fail_after is not None and len(self.received) >= self.fail_after:
            raise self.error
        n = min(self.chunk, len(data))
        self.received += bytes(data[:n])
        return n


class TestSendAll:

    def test_single_call_when_everything_fits(self):
        sock = ChunkySocket(chunk=1024)
        assert send_all(sock, b"hello\n") == 6
        assert sock.received == b"hello\n"
        assert sock.calls == 1

    def test_loops_on_partial_writes(self):
        payload = bytes(range(256)) * 4
        sock = ChunkySocket(chunk=7)

        assert send_all(sock, payload) == len(payload)
        assert sock.received == payload
        assert sock.calls == -(-len(payload) // 7)

    def test_reports_exact_bytes_on_error(self):
        payload = b"x" * 100
        sock = ChunkySocket(chunk=30, fail_after=60)

        with pytest.raises(SendError) as exc_info:
            send_all(sock, payload)

        assert exc_info.value.bytes_sent == 60
        assert exc_info.value.total == 100
        assert isinstance(exc_info.value.cause, BrokenPipeError)

    def test_error_on_first_call_reports_zero(self):
        sock = ChunkySocket(chunk=10, fail_after=0, error=ConnectionResetError())

        with pytest.raises(SendError) as exc_info:
            send_all(sock, b"abc")

        assert exc_info.value.bytes_sent == 0

    def test_timeout_is_a_send_error(self):
        sock = ChunkySocket(chunk=4, fail_after=8, error=socket.timeout("timed out"))

        with pytest.raises(SendError) as exc_info:
            send_all(sock, b"0123456789ab")

        assert exc_info.value.bytes_sent == 8

    def test_zero_progress_is_an_error(self):
        sock = ChunkySocket(chunk=0)

        with pytest.raises(SendError) as exc_info:
            send_all(sock, b"abc")

        assert exc_info.value.bytes_sent == 0

    def test_empty_payload(self):
        sock = ChunkySocket(chunk=10)
        assert send_all(sock, b"") == 0
        assert sock.calls == 0

    def test_closed_socket_is_a_send_error(self):
        a, b = socket.socketpair()
        b.close()
        a.close()

        with pytest.raises(SendError):
            send_all(a, b"data")

    def test_real_socket_pair(self):
        a, b = socket.socketpair()
        try:
            assert send_all(a, b"line one\nline two\n") == 18
            assert b.recv(100) == b"line one\nline two\n"
        finally:
            a.close()
            b.close()


class TestConnection:

    def test_coordinates(self):
        conn = Connection(handle=4, remote_address="1.2.3.4", location=(10.5, -20.25))
        assert conn.latitude == 10.5
        assert conn.longitude == -20.25

    def test_equality_ignores_socket(self):
        a = Connection(handle=4, remote_address="x", location=(1.0, 2.0), sock=object(), connected_at=1.0)
        b = Connection(handle=4, remote_address="x", location=(1.0, 2.0), sock=object(), connected_at=2.0)
        assert a == b


class TestHelpers:

    @pytest.mark.parametrize("address,expected", [
        (("127.0.0.1", 5000), "127.0.0.1"),
        (("::ffff:203.0.113.9", 5000, 0, 0), "203.0.113.9"),
        (("2001:db8::1", 5000, 0, 0), "2001:db8::1"),
        ("10.1.1.1", "10.1.1.1"),
    ])
    def test_format_address(self, address, expected):
        assert format_address(address) == expected

    def test_close_quietly_tolerates_none_and_double_close(self):
        close_quietly(None)
        a, b = socket.socketpair()
        close_quietly(a)
        close_quietly(a)
        b.close()
