"""
Wire format helpers for the handshake and payload of a transfer.

Handshake tokens are UTF-8 strings each terminated by a single null byte:

    CODE \0 TYPE \0                        followed by a type-specific part
    FILE:  FILENAME \0 SIZE \0 <SIZE raw bytes>
    TEXT:  <UTF-8 text until the sender closes the stream>

Tokens are read one byte at a time so nothing past the delimiter is consumed;
the raw payload that follows is read with exact-count or read-to-EOF loops.
"""

import os
import re
import threading
from dataclasses import dataclass

from typing_extensions import Callable

from .config import CHUNK_SIZE, DELIMITER, MAX_TOKEN_SIZE, TYPE_FILE
from .errors import ProtocolError, TransferIOError


@dataclass(frozen=True)
class FileHeader:
    """Name and size announced by a FILE handshake."""

    filename: str
    size: int


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_token(text: str) -> bytes:
    data = text.encode("utf-8")
    if DELIMITER in data:
        raise ValueError(f"Token must not contain a null byte: {text!r}")
    return data + DELIMITER


def encode_handshake(code: str, transfer_type: str) -> bytes:
    """Encode the CODE and TYPE tokens that open every connection."""
    return encode_token(code) + encode_token(transfer_type)


def encode_file_header(code: str, filename: str, size: int) -> bytes:
    """Encode the complete handshake for a FILE transfer."""
    if size < 0:
        raise ValueError(f"File size must not be negative: {size}")
    return (
        encode_handshake(code, TYPE_FILE)
        + encode_token(filename)
        + encode_token(str(size))
    )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def read_token(sock) -> str | None:
    """Read one null-terminated token.

    Returns None if the stream ends before the first byte.  Raises
    ProtocolError if it ends in the middle of a token, if the token grows
    past MAX_TOKEN_SIZE, or if it is not valid UTF-8.
    """
    data = bytearray()
    while True:
        byte = sock.recv(1)
        if not byte:
            if not data:
                return None
            raise ProtocolError("Stream closed in the middle of a token")
        if byte == DELIMITER:
            break
        data.extend(byte)
        if len(data) > MAX_TOKEN_SIZE:
            raise ProtocolError(f"Token longer than {MAX_TOKEN_SIZE} bytes")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Token is not valid UTF-8: {e}") from e


def read_file_header(sock) -> FileHeader:
    """Read the FILENAME and SIZE tokens of a FILE handshake."""
    filename = read_token(sock)
    size_str = read_token(sock)
    if filename is None or size_str is None:
        raise ProtocolError("Stream closed before the file header was complete")
    if not size_str.isascii() or not size_str.isdigit():
        raise ProtocolError(f"Invalid file size: {size_str!r}")
    return FileHeader(filename=filename, size=int(size_str))


def recv_exactly(sock, num_bytes: int) -> bytes | None:
    """Read exactly *num_bytes* from the socket. Returns None on disconnect."""
    data = bytearray()
    while len(data) < num_bytes:
        packet = sock.recv(min(CHUNK_SIZE, num_bytes - len(data)))
        if not packet:
            return None
        data.extend(packet)
    return bytes(data)


def recv_until_eof(sock, limit: int | None = None) -> bytes:
    """Read everything until the peer closes its side of the stream.

    Raises ProtocolError once more than *limit* bytes have arrived.
    """
    data = bytearray()
    while True:
        packet = sock.recv(CHUNK_SIZE)
        if not packet:
            return bytes(data)
        data.extend(packet)
        if limit is not None and len(data) > limit:
            raise ProtocolError(f"Payload larger than {limit} bytes")


# ---------------------------------------------------------------------------
# File payload
# ---------------------------------------------------------------------------


def recv_file(
    sock,
    filepath: str,
    filesize: int,
    progress_callback: Callable[[int, int], None] | None = None,
    cancel_event: threading.Event | None = None,
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """
    Copy *filesize* raw bytes from the socket into *filepath*.

    Returns the number of bytes written.  The cancel event is checked before
    every chunk; a cancelled copy returns early and leaves what was written
    on disk.  Raises TransferIOError if the stream ends before *filesize*
    bytes arrived or if the socket or file fails.

    progress_callback: optional callable(bytes_written, total_bytes), called
    after every chunk
    """
    written = 0
    try:
        with open(filepath, "wb") as f:
            while written < filesize:
                if cancel_event is not None and cancel_event.is_set():
                    break
                chunk = recv_exactly(sock, min(chunk_size, filesize - written))
                if chunk is None:
                    raise TransferIOError(
                        f"Stream closed after {written} of {filesize} bytes"
                    )
                f.write(chunk)
                written += len(chunk)
                if progress_callback:
                    progress_callback(written, filesize)
    except TransferIOError:
        raise
    except OSError as e:
        raise TransferIOError(f"Receiving {filepath} failed: {e}") from e
    return written


def send_stream(
    sock,
    filepath: str,
    progress_callback: Callable[[int, int], None] | None = None,
    chunk_size: int = CHUNK_SIZE,
    size: int | None = None,
) -> int:
    """Write exactly *size* bytes of *filepath* to the socket in chunks.

    *size* defaults to the current file size; pass the size announced in the
    header so bytes appended later are never sent.  Returns the number of
    bytes sent.  Raises TransferIOError if the file ends early.
    """
    total = os.path.getsize(filepath) if size is None else size
    sent = 0
    with open(filepath, "rb") as f:
        while sent < total:
            chunk = f.read(min(chunk_size, total - sent))
            if not chunk:
                raise TransferIOError(
                    f"{filepath} ended after {sent} of {total} bytes"
                )
            sock.sendall(chunk)
            sent += len(chunk)
            if progress_callback:
                progress_callback(sent, total)
    return sent


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------

# Windows reserved device names that must never be used as filenames.
_WINDOWS_RESERVED = re.compile(
    r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])(\.|$)", re.IGNORECASE
)


def safe_filename(filename: str) -> str:
    """Sanitize an untrusted filename.

    - Strips directory components, both / and \\ style.
    - Removes null bytes.
    - Falls back to "received" for empty names, dot names and Windows
      reserved device names.
    """
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = name.replace("\x00", "").strip()
    if name in ("", ".", ".."):
        return "received"
    if _WINDOWS_RESERVED.match(name):
        return "received"
    return name
