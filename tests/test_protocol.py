"""
Tests for protocol.py — handshake tokens and payload helpers.
"""

import socket
import threading

import pytest

from codedrop.config import CHUNK_SIZE, MAX_TOKEN_SIZE
from codedrop.errors import ProtocolError, TransferIOError
from codedrop.protocol import (
    FileHeader,
    encode_file_header,
    encode_handshake,
    encode_token,
    read_file_header,
    read_token,
    recv_exactly,
    recv_file,
    recv_until_eof,
    safe_filename,
    send_stream,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_socket_pair():
    """Return a connected (client, server) socket pair."""
    server_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server_sock.bind(("127.0.0.1", 0))
    server_sock.listen(1)
    port = server_sock.getsockname()[1]

    client = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    client.connect(("127.0.0.1", port))
    server, _ = server_sock.accept()
    server_sock.close()
    return client, server


def send_and_close(sock, data: bytes) -> threading.Thread:
    def run():
        try:
            sock.sendall(data)
        except OSError:
            pass  # receiver hung up early
        finally:
            sock.close()

    t = threading.Thread(target=run)
    t.start()
    return t


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class TestEncoding:
    def test_handshake(self):
        assert encode_handshake("123456", "TEXT") == b"123456\0TEXT\0"

    def test_file_header(self):
        assert (
            encode_file_header("123456", "report.pdf", 204800)
            == b"123456\0FILE\0report.pdf\x00204800\0"
        )

    def test_token_is_utf8(self):
        assert encode_token("résumé.txt") == "résumé.txt".encode("utf-8") + b"\0"

    def test_token_with_null_byte_rejected(self):
        with pytest.raises(ValueError):
            encode_token("bad\0name")

    def test_negative_size_rejected(self):
        with pytest.raises(ValueError):
            encode_file_header("123456", "x", -1)


# ---------------------------------------------------------------------------
# recv_exactly / recv_until_eof
# ---------------------------------------------------------------------------


class TestRecvExactly:
    def test_reads_exact_bytes(self):
        client, server = make_socket_pair()
        try:
            client.sendall(b"hello world")
            assert recv_exactly(server, 5) == b"hello"
            assert recv_exactly(server, 6) == b" world"
        finally:
            client.close()
            server.close()

    def test_returns_none_on_disconnect(self):
        client, server = make_socket_pair()
        client.sendall(b"abc")
        client.close()
        try:
            assert recv_exactly(server, 10) is None
        finally:
            server.close()

    def test_handles_fragmented_delivery(self):
        """Simulate fragmented delivery by sending bytes one at a time."""
        client, server = make_socket_pair()
        try:
            data = b"fragmented"

            def send_slowly():
                for byte in data:
                    client.sendall(bytes([byte]))

            t = threading.Thread(target=send_slowly)
            t.start()
            result = recv_exactly(server, len(data))
            t.join()
            assert result == data
        finally:
            client.close()
            server.close()


class TestRecvUntilEof:
    def test_reads_everything(self):
        client, server = make_socket_pair()
        payload = b"x" * (CHUNK_SIZE * 3 + 17)
        t = send_and_close(client, payload)
        try:
            assert recv_until_eof(server) == payload
        finally:
            t.join()
            server.close()

    def test_limit_exceeded(self):
        client, server = make_socket_pair()
        t = send_and_close(client, b"y" * 100)
        try:
            with pytest.raises(ProtocolError):
                recv_until_eof(server, limit=10)
        finally:
            t.join()
            server.close()


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TestReadToken:
    def test_does_not_consume_past_delimiter(self):
        client, server = make_socket_pair()
        try:
            client.sendall(b"abc\0def\0rest")
            assert read_token(server) == "abc"
            assert read_token(server) == "def"
            assert recv_exactly(server, 4) == b"rest"
        finally:
            client.close()
            server.close()

    def test_empty_token(self):
        client, server = make_socket_pair()
        try:
            client.sendall(b"\0")
            assert read_token(server) == ""
        finally:
            client.close()
            server.close()

    def test_waits_for_delimiter(self):
        client, server = make_socket_pair()
        try:

            def send_in_pieces():
                for piece in (b"12", b"34", b"56", b"\0"):
                    client.sendall(piece)

            t = threading.Thread(target=send_in_pieces)
            t.start()
            assert read_token(server) == "123456"
            t.join()
        finally:
            client.close()
            server.close()

    def test_none_when_closed_before_first_byte(self):
        client, server = make_socket_pair()
        client.close()
        try:
            assert read_token(server) is None
        finally:
            server.close()

    def test_closed_mid_token(self):
        client, server = make_socket_pair()
        client.sendall(b"1234")
        client.close()
        try:
            with pytest.raises(ProtocolError):
                read_token(server)
        finally:
            server.close()

    def test_token_too_long(self):
        client, server = make_socket_pair()
        t = send_and_close(client, b"a" * (MAX_TOKEN_SIZE + 10) + b"\0")
        try:
            with pytest.raises(ProtocolError):
                read_token(server)
        finally:
            t.join()
            server.close()

    def test_invalid_utf8(self):
        client, server = make_socket_pair()
        try:
            client.sendall(b"\xff\xfe\0")
            with pytest.raises(ProtocolError):
                read_token(server)
        finally:
            client.close()
            server.close()


class TestReadFileHeader:
    def test_valid_header(self):
        client, server = make_socket_pair()
        try:
            client.sendall(b"report.pdf\x00204800\x00")
            assert read_file_header(server) == FileHeader("report.pdf", 204800)
        finally:
            client.close()
            server.close()

    @pytest.mark.parametrize("size", [b"-1", b"12a", b"", b"1.5"])
    def test_invalid_size(self, size):
        client, server = make_socket_pair()
        try:
            client.sendall(b"name\0" + size + b"\0")
            with pytest.raises(ProtocolError):
                read_file_header(server)
        finally:
            client.close()
            server.close()

    def test_missing_size(self):
        client, server = make_socket_pair()
        client.sendall(b"name\0")
        client.close()
        try:
            with pytest.raises(ProtocolError):
                read_file_header(server)
        finally:
            server.close()


# ---------------------------------------------------------------------------
# recv_file / send_stream
# ---------------------------------------------------------------------------


class TestRecvFile:
    @pytest.mark.parametrize(
        "size", [0, 1, CHUNK_SIZE - 1, CHUNK_SIZE, CHUNK_SIZE + 1, 3 * CHUNK_SIZE + 5]
    )
    def test_writes_exactly_size_bytes(self, tmp_path, size):
        dst = tmp_path / "dst.bin"
        content = bytes(i % 251 for i in range(size))
        client, server = make_socket_pair()
        t = send_and_close(client, content)
        try:
            written = recv_file(server, str(dst), size)
        finally:
            t.join()
            server.close()

        assert written == size
        assert dst.read_bytes() == content

    def test_does_not_read_past_size(self, tmp_path):
        dst = tmp_path / "dst.bin"
        client, server = make_socket_pair()
        try:
            client.sendall(b"0123456789trailing")
            assert recv_file(server, str(dst), 10) == 10
            assert recv_exactly(server, 8) == b"trailing"
        finally:
            client.close()
            server.close()
        assert dst.read_bytes() == b"0123456789"

    def test_progress_after_every_chunk(self, tmp_path):
        dst = tmp_path / "prog_dst.bin"
        size = 25 * CHUNK_SIZE
        calls = []

        client, server = make_socket_pair()
        t = send_and_close(client, b"p" * size)
        try:
            recv_file(server, str(dst), size, progress_callback=lambda c, s: calls.append((c, s)))
        finally:
            t.join()
            server.close()

        assert len(calls) == 25
        assert calls == sorted(calls)
        assert calls[-1] == (size, size)

    def test_cancel_stops_at_chunk_boundary(self, tmp_path):
        dst = tmp_path / "cancel_dst.bin"
        size = 204800
        cancel = threading.Event()

        def progress(current, total):
            if current >= 100000:
                cancel.set()

        client, server = make_socket_pair()
        t = send_and_close(client, b"c" * size)
        try:
            written = recv_file(
                server, str(dst), size, progress_callback=progress, cancel_event=cancel
            )
        finally:
            server.close()
            t.join()

        # 13 chunks of 8192 is the first boundary past 100000 bytes
        assert written == 13 * CHUNK_SIZE
        assert dst.stat().st_size == written

    def test_cancel_before_start(self, tmp_path):
        dst = tmp_path / "big_dst.bin"
        cancel = threading.Event()
        cancel.set()

        client, server = make_socket_pair()
        try:
            client.sendall(b"z" * 1024)
            written = recv_file(server, str(dst), 1024, cancel_event=cancel)
        finally:
            client.close()
            server.close()

        assert written == 0
        assert dst.exists()

    def test_short_stream_raises_and_keeps_partial(self, tmp_path):
        dst = tmp_path / "short.bin"
        client, server = make_socket_pair()
        t = send_and_close(client, b"s" * 100)
        try:
            with pytest.raises(TransferIOError):
                recv_file(server, str(dst), 1000)
        finally:
            t.join()
            server.close()
        assert dst.read_bytes() == b"s" * 100


class TestSendStream:
    def test_sends_whole_file(self, tmp_path):
        src = tmp_path / "src.bin"
        content = b"binary content 1234" * 1000
        src.write_bytes(content)
        calls = []

        client, server = make_socket_pair()
        try:
            def sender():
                send_stream(client, str(src), lambda c, s: calls.append((c, s)))
                client.close()

            t = threading.Thread(target=sender)
            t.start()
            received = recv_until_eof(server)
            t.join()
        finally:
            server.close()

        assert received == content
        assert calls[-1] == (len(content), len(content))

    def test_stops_at_announced_size(self, tmp_path):
        src = tmp_path / "growing.log"
        src.write_bytes(b"a" * 10000 + b"appended later")
        calls = []

        client, server = make_socket_pair()
        try:
            def sender():
                send_stream(client, str(src), lambda c, s: calls.append((c, s)), size=10000)
                client.close()

            t = threading.Thread(target=sender)
            t.start()
            received = recv_until_eof(server)
            t.join()
        finally:
            server.close()

        assert received == b"a" * 10000
        assert calls[-1] == (10000, 10000)

    def test_file_shorter_than_announced(self, tmp_path):
        src = tmp_path / "shrunk.bin"
        src.write_bytes(b"b" * 100)

        client, server = make_socket_pair()
        try:
            with pytest.raises(TransferIOError):
                send_stream(client, str(src), size=5000)
        finally:
            client.close()
            server.close()


# ---------------------------------------------------------------------------
# safe_filename
# ---------------------------------------------------------------------------


class TestSafeFilename:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("report.pdf", "report.pdf"),
            ("../../.bashrc", ".bashrc"),
            ("C:\\Users\\me\\notes.txt", "notes.txt"),
            ("..", "received"),
            ("", "received"),
            ("NUL.txt", "received"),
            ("com1", "received"),
        ],
    )
    def test_sanitizes(self, raw, expected):
        assert safe_filename(raw) == expected
