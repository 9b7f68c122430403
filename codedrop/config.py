"""
Configuration constants for the CodeDrop transfer engine.
"""

import os

# --- Networking ---
DEFAULT_PORT = 10001         # TCP port the listener binds and senders dial
CHUNK_SIZE = 8192            # Chunk size (bytes) for file copy and progress
CONNECT_TIMEOUT = 10         # Seconds to wait for an outbound connect
ACCEPT_POLL_INTERVAL = 1.0   # Seconds between checks of the running flag
SESSION_IDLE_TIMEOUT = 30    # Seconds a session may wait for the next byte

# --- Listener recovery ---
BIND_RETRIES = 5             # Failed binds tolerated before giving up
BIND_BACKOFF = 0.5           # First retry delay (seconds), doubled each time
BIND_BACKOFF_MAX = 8.0       # Upper bound for the retry delay

# --- Protocol ---
DELIMITER = b"\0"            # Separates handshake tokens on the wire
TYPE_FILE = "FILE"
TYPE_TEXT = "TEXT"
MAX_TOKEN_SIZE = 4096        # Longest accepted handshake token (bytes)
MAX_TEXT_SIZE = 1024 * 1024  # Longest accepted TEXT payload (bytes)

# --- Authorization ---
CODE_LENGTH = 6              # Digits in the shared transfer code
ROTATE_ON_TEXT = False       # Text receipt keeps the current code

# --- Receiving ---
CONFIRM_TIMEOUT = 120        # Seconds to wait for accept/reject of a file
DOWNLOADS_DIR = os.path.join(os.path.expanduser("~"), "Downloads")

# --- Logging ---
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
