"""
CodeDrop - LAN text and file transfer gated by a rotating 6-digit code.

A listener accepts one transfer at a time; senders open a fresh connection
for every text or file.
"""

__version__ = "1.0.0"

from .client import (
    format_size,
    get_local_ip,
    is_valid_ipv4,
    send_file,
    send_text,
)
from .code import CodeAuthority, generate_code, is_valid_code
from .config import (
    CHUNK_SIZE,
    CODE_LENGTH,
    DEFAULT_PORT,
)
from .engine import DropEngine
from .errors import (
    AuthError,
    BindError,
    ConnectError,
    ProtocolError,
    TransferError,
    TransferIOError,
)
from .protocol import FileHeader
from .server import IncomingFile, ListenerState, ReceivedFile, TransferServer

__all__ = [
    "DEFAULT_PORT",
    "CHUNK_SIZE",
    "CODE_LENGTH",
    "CodeAuthority",
    "generate_code",
    "is_valid_code",
    "DropEngine",
    "TransferServer",
    "ListenerState",
    "IncomingFile",
    "ReceivedFile",
    "FileHeader",
    "send_text",
    "send_file",
    "format_size",
    "is_valid_ipv4",
    "get_local_ip",
    "TransferError",
    "BindError",
    "ConnectError",
    "ProtocolError",
    "AuthError",
    "TransferIOError",
]
