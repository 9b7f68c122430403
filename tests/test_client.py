"""
Tests for client.py — format_size, address checks and the sender functions.
"""

import socket
import threading

import pytest

from codedrop.client import format_size, is_valid_ipv4, send_file, send_text
from codedrop.errors import ConnectError
from codedrop.protocol import recv_until_eof


class TestFormatSize:
    def test_bytes(self):
        assert format_size(0) == "0 B"
        assert format_size(512) == "512 B"
        assert format_size(1023) == "1023 B"

    def test_binary_units(self):
        assert format_size(1024) == "1.0 KiB"
        assert format_size(1126) == "1.1 KiB"
        assert format_size(1024 * 1024) == "1.0 MiB"
        assert format_size(1024**3) == "1.0 GiB"
        assert format_size(1024**4) == "1.0 TiB"

    def test_si_units(self):
        assert format_size(999, si=True) == "999 B"
        assert format_size(1000, si=True) == "1.0 kB"
        assert format_size(1500000, si=True) == "1.5 MB"
        assert format_size(204800, si=True) == "204.8 kB"


class TestIsValidIpv4:
    def test_valid(self):
        assert is_valid_ipv4("192.168.1.20")
        assert is_valid_ipv4("127.0.0.1")

    def test_invalid(self):
        assert not is_valid_ipv4("")
        assert not is_valid_ipv4("256.1.1.1")
        assert not is_valid_ipv4("example.com")
        assert not is_valid_ipv4("::1")


# ---------------------------------------------------------------------------
# Sending against a plain listening socket
# ---------------------------------------------------------------------------


class Capture:
    """Accept one connection and keep everything the sender wrote."""

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.port = self.sock.getsockname()[1]
        self.data = b""
        self._thread = threading.Thread(target=self._run)
        self._thread.start()

    def _run(self):
        conn, _ = self.sock.accept()
        try:
            self.data = recv_until_eof(conn)
        finally:
            conn.close()

    def join(self):
        self._thread.join(5)
        self.sock.close()
        return self.data


def unused_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


class TestSendText:
    def test_wire_format(self):
        capture = Capture()
        sent = send_text("127.0.0.1", "123456", "hello", port=capture.port)
        assert sent == 5
        assert capture.join() == b"123456\0TEXT\0hello"

    def test_unicode_payload(self):
        capture = Capture()
        send_text("127.0.0.1", "000042", "こんにちは 🏮", port=capture.port)
        assert capture.join() == b"000042\0TEXT\0" + "こんにちは 🏮".encode("utf-8")

    def test_refused(self):
        with pytest.raises(ConnectError):
            send_text("127.0.0.1", "123456", "hello", port=unused_port())


class TestSendFile:
    def test_wire_format(self, tmp_path):
        src = tmp_path / "report.pdf"
        content = bytes(range(256)) * 100
        src.write_bytes(content)
        calls = []

        capture = Capture()
        sent = send_file(
            "127.0.0.1",
            "123456",
            str(src),
            port=capture.port,
            progress_callback=lambda c, t: calls.append((c, t)),
        )

        assert sent == len(content)
        assert capture.join() == b"123456\0FILE\0report.pdf\0" + b"25600\0" + content
        assert calls[-1] == (len(content), len(content))

    def test_empty_file(self, tmp_path):
        src = tmp_path / "empty.bin"
        src.write_bytes(b"")
        capture = Capture()
        assert send_file("127.0.0.1", "123456", str(src), port=capture.port) == 0
        assert capture.join() == b"123456\0FILE\0empty.bin\0" + b"0\0"

    def test_missing_file_checked_before_connecting(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            send_file("127.0.0.1", "123456", str(tmp_path / "nope.bin"), port=unused_port())

    def test_refused(self, tmp_path):
        src = tmp_path / "a.txt"
        src.write_bytes(b"a")
        with pytest.raises(ConnectError):
            send_file("127.0.0.1", "123456", str(src), port=unused_port())
