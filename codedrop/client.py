"""
TCP sender — connects to a remote listener and delivers one text or file.

Each send opens a fresh TCP connection, writes the handshake and payload,
and closes the connection.  The listener sends nothing back: a transfer with
a wrong code simply ends with the remote side hanging up.
"""

import ipaddress
import logging
import os
import socket

from typing_extensions import Callable

from .config import CONNECT_TIMEOUT, DEFAULT_PORT, TYPE_TEXT
from .errors import ConnectError, TransferIOError
from .protocol import encode_file_header, encode_handshake, send_stream

logger = logging.getLogger(__name__)


def _connect(host: str, port: int, timeout: float = CONNECT_TIMEOUT) -> socket.socket:
    """Open a TCP connection to a remote listener."""
    logger.info("Connecting to %s:%d", host, port)
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect((host, port))
    except OSError as e:
        sock.close()
        raise ConnectError(f"Cannot connect to {host}:{port}: {e}") from e
    # Connected; payload writes block without a deadline.
    sock.settimeout(None)
    return sock


def format_size(size_bytes: int, si: bool = False) -> str:
    """Human-readable byte count.

    Binary units (KiB, MiB, ...) by default; *si* selects decimal units
    (kB, MB, ...).  Counts below one unit are printed as whole bytes.
    """
    unit = 1000 if si else 1024
    if size_bytes < unit:
        return f"{size_bytes} B"
    prefixes = "kMGTPE" if si else "KMGTPE"
    value = float(size_bytes)
    exp = 0
    while value >= unit and exp < len(prefixes):
        value /= unit
        exp += 1
    return f"{value:.1f} {prefixes[exp - 1]}{'' if si else 'i'}B"


def is_valid_ipv4(address: str) -> bool:
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


def get_local_ip() -> str:
    """Best-effort LAN address of this host (no packets are sent)."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


# ======================================================================
# Sending
# ======================================================================


def send_text(host: str, code: str, text: str, port: int = DEFAULT_PORT) -> int:
    """
    Send a text message to a remote listener.

    Returns the number of payload bytes written.
    Raises ConnectError if the host cannot be reached and TransferIOError if
    the connection fails while writing.
    """
    payload = text.encode("utf-8")
    sock = _connect(host, port)
    try:
        sock.sendall(encode_handshake(code, TYPE_TEXT) + payload)
    except OSError as e:
        raise TransferIOError(f"Sending text to {host}:{port} failed: {e}") from e
    finally:
        sock.close()
    logger.info("Sent %d bytes of text to %s:%d", len(payload), host, port)
    return len(payload)


def send_file(
    host: str,
    code: str,
    filepath: str,
    port: int = DEFAULT_PORT,
    progress_callback: Callable[[int, int], None] | None = None,
) -> int:
    """
    Send a local file to a remote listener.

    Returns the number of file bytes written.
    Raises FileNotFoundError before connecting if *filepath* is not a file,
    ConnectError if the host cannot be reached and TransferIOError if the
    connection fails mid-transfer.
    progress_callback: optional callable(bytes_sent, total_bytes)
    """
    if not os.path.isfile(filepath):
        raise FileNotFoundError(f"Local file not found: {filepath}")

    filename = os.path.basename(filepath)
    filesize = os.path.getsize(filepath)

    sock = _connect(host, port)
    try:
        sock.sendall(encode_file_header(code, filename, filesize))
        sent = send_stream(sock, filepath, progress_callback, size=filesize)
    except (FileNotFoundError, TransferIOError):
        raise
    except OSError as e:
        raise TransferIOError(f"Sending {filename} to {host}:{port} failed: {e}") from e
    finally:
        sock.close()

    logger.info("Sent %s (%d bytes) to %s:%d", filename, sent, host, port)
    return sent
