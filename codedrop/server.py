"""
TCP transfer listener — accepts one connection at a time from remote senders
and receives the text or file they deliver.

Sessions are strictly serialized: the accept loop hands each connection to a
session worker and waits for it before accepting again, so a second sender
waits in the listen backlog until the current transfer is over.

File flow (with confirmation):
  1. Sender sends:  CODE\\0FILE\\0<filename>\\0<size>\\0 then the raw bytes.
  2. The session places an IncomingFile on the pending_files queue and blocks
     on request.decision_event (timeout: CONFIRM_TIMEOUT).
  3. The front-end dequeues the request, asks the user, then calls
     request.accept(destination) or request.reject().
  4. If accepted, the bytes are copied chunk by chunk; request.cancel() stops
     the copy at the next chunk boundary.  A completed copy rotates the code.

A connection whose code does not match is closed without reading further
and without telling anyone.  A session whose peer goes quiet for
SESSION_IDLE_TIMEOUT seconds is dropped so the next sender can be served;
before the code arrives that is as silent as a wrong code.
"""

import enum
import logging
import os
import queue
import socket
import threading
import time
from dataclasses import dataclass, field

from typing_extensions import Callable

from .code import CodeAuthority
from .config import (
    ACCEPT_POLL_INTERVAL,
    BIND_BACKOFF,
    BIND_BACKOFF_MAX,
    BIND_RETRIES,
    CONFIRM_TIMEOUT,
    DEFAULT_PORT,
    DOWNLOADS_DIR,
    MAX_TEXT_SIZE,
    ROTATE_ON_TEXT,
    SESSION_IDLE_TIMEOUT,
    TYPE_FILE,
    TYPE_TEXT,
)
from .errors import AuthError, BindError, ProtocolError, TransferIOError
from .protocol import (
    FileHeader,
    read_file_header,
    read_token,
    recv_file,
    recv_until_eof,
    safe_filename,
)

logger = logging.getLogger(__name__)

# Connections allowed to wait while a session is in progress.
LISTEN_BACKLOG = 5


class ListenerState(enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    STOPPED = "stopped"


@dataclass
class IncomingFile:
    """Represents an incoming file awaiting user confirmation."""

    sender_ip: str
    header: FileHeader
    # Set by accept() / reject() to unblock the session thread
    decision_event: threading.Event = field(default_factory=threading.Event)
    # Set by cancel(); checked between chunks of the copy
    cancel_event: threading.Event = field(default_factory=threading.Event)
    accepted: bool = False
    destination: str | None = None
    # Orders a late answer against the confirmation timeout
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @property
    def filename(self) -> str:
        return self.header.filename

    @property
    def size(self) -> int:
        return self.header.size

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def default_destination(self, directory: str = DOWNLOADS_DIR) -> str:
        """Suggested save path: the sanitized filename inside *directory*."""
        return os.path.join(directory, safe_filename(self.header.filename))

    def accept(self, destination: str) -> bool:
        """Accept into *destination*.  Returns False if the request already expired."""
        with self._lock:
            if self.cancel_event.is_set():
                return False
            self.destination = destination
            self.accepted = True
            self.decision_event.set()
            return True

    def reject(self) -> None:
        with self._lock:
            self.accepted = False
            self.decision_event.set()

    def cancel(self) -> None:
        """Stop the copy, or decline the file if no decision was made yet."""
        with self._lock:
            self.cancel_event.set()
            if not self.decision_event.is_set():
                self.accepted = False
                self.decision_event.set()

    def expire(self) -> bool:
        """Give up waiting for a decision.

        Returns False when an answer arrived first; that answer then stands.
        """
        with self._lock:
            if self.decision_event.is_set():
                return False
            self.cancel_event.set()
            self.accepted = False
            self.decision_event.set()
            return True


@dataclass(frozen=True)
class ReceivedFile:
    """Completion report for a received file."""

    path: str
    size: int
    elapsed: float


class TransferServer:
    """Serialized TCP listener for incoming transfers."""

    def __init__(
        self,
        authority: CodeAuthority,
        port: int = DEFAULT_PORT,
        host: str = "0.0.0.0",
        on_error: Callable[[BaseException], None] | None = None,
        on_text: Callable[[str, str], None] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
        on_file_received: Callable[[ReceivedFile], None] | None = None,
        confirm_timeout: float = CONFIRM_TIMEOUT,
        bind_retries: int = BIND_RETRIES,
        bind_backoff: float = BIND_BACKOFF,
        rotate_on_text: bool = ROTATE_ON_TEXT,
        idle_timeout: float | None = SESSION_IDLE_TIMEOUT,
    ):
        self.authority = authority
        self.host = host
        self.port = port
        self.on_error = on_error
        self.on_text = on_text
        self.on_progress = on_progress
        self.on_file_received = on_file_received
        self.confirm_timeout = confirm_timeout
        self.bind_retries = bind_retries
        self.bind_backoff = bind_backoff
        self.rotate_on_text = rotate_on_text
        self.idle_timeout = idle_timeout

        self.state = ListenerState.IDLE
        # Set once the port is bound; self.port then holds the real port.
        self.ready = threading.Event()
        # Queue of IncomingFile objects waiting for front-end confirmation.
        self.pending_files: queue.Queue[IncomingFile] = queue.Queue()

        self._stop_event = threading.Event()
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._conn: socket.socket | None = None
        self._active: IncomingFile | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the accept loop in a daemon thread."""
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._accept_loop, name="codedrop-listener", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop listening and abort the active session, if any."""
        self._stop_event.set()
        active = self._active
        if active is not None:
            active.cancel()
        conn = self._conn
        if conn is not None:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        self._close_listener()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def cancel_active(self) -> bool:
        """Cancel the file currently being confirmed or copied."""
        active = self._active
        if active is None:
            return False
        active.cancel()
        return True

    # ------------------------------------------------------------------
    # Accept loop
    # ------------------------------------------------------------------

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(LISTEN_BACKLOG)
        except OSError:
            sock.close()
            raise
        sock.settimeout(ACCEPT_POLL_INTERVAL)  # so we can check for stop periodically
        return sock

    def _close_listener(self) -> None:
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    def _backoff(self, failures: int) -> float:
        return min(self.bind_backoff * 2 ** (failures - 1), BIND_BACKOFF_MAX)

    def _accept_loop(self) -> None:
        failures = 0
        accept_failures = 0
        while not self._stop_event.is_set():
            sock = self._sock
            if sock is None:
                try:
                    sock = self._bind()
                except OSError as e:
                    failures += 1
                    if failures > self.bind_retries:
                        self._report(
                            BindError(f"Cannot listen on port {self.port}: {e}")
                        )
                        break
                    delay = self._backoff(failures)
                    logger.warning(
                        "Bind on port %d failed (%s); retry %d/%d in %.1fs",
                        self.port, e, failures, self.bind_retries, delay,
                    )
                    self._stop_event.wait(delay)
                    continue
                failures = 0
                self._sock = sock
                self.port = sock.getsockname()[1]
                self.state = ListenerState.LISTENING
                self.ready.set()
                logger.info("Listening on port %d", self.port)

            try:
                conn, addr = sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._stop_event.is_set():
                    break
                accept_failures += 1
                self._report(e)
                self._close_listener()
                # Cleared only by the next successful accept.
                delay = self._backoff(accept_failures)
                logger.warning(
                    "Accept on port %d failed; rebinding in %.2fs", self.port, delay
                )
                self._stop_event.wait(delay)
                continue

            accept_failures = 0
            self.state = ListenerState.PROCESSING
            worker = threading.Thread(
                target=self._run_session,
                args=(conn, addr),
                name="codedrop-session",
                daemon=True,
            )
            worker.start()
            worker.join()
            if not self._stop_event.is_set():
                self.state = ListenerState.LISTENING

        self._close_listener()
        self.state = ListenerState.STOPPED
        logger.info("Listener stopped")

    # ------------------------------------------------------------------
    # Session — authorizes and dispatches one connection
    # ------------------------------------------------------------------

    def _run_session(self, conn: socket.socket, addr: tuple) -> None:
        # Bounds how long a stalled peer can hold the serialized listener.
        conn.settimeout(self.idle_timeout)
        self._conn = conn
        logger.info("Incoming connection from %s:%d", addr[0], addr[1])
        try:
            self._dispatch(conn, addr[0])
        except AuthError as e:
            logger.info("%s; disconnecting %s", e, addr[0])
        except Exception as e:
            active = self._active
            if self._stop_event.is_set() or (active is not None and active.cancelled):
                # stop() or cancel() shut the stream down under us.
                logger.info("Session with %s aborted: %s", addr[0], e)
            elif isinstance(e, socket.timeout):
                self._report(
                    TransferIOError(f"{addr[0]} sent nothing for {self.idle_timeout}s")
                )
            else:
                self._report(e)
        finally:
            self._conn = None
            self._active = None
            conn.close()

    def _dispatch(self, conn: socket.socket, sender_ip: str) -> None:
        try:
            code = read_token(conn)
        except (ProtocolError, socket.timeout):
            code = None
        if code is None:
            logger.info("Connection from %s sent no code; closing", sender_ip)
            return
        if not self.authority.matches(code):
            raise AuthError("Code mismatch")

        transfer_type = read_token(conn)
        if transfer_type == TYPE_FILE:
            self._receive_file(conn, sender_ip)
        elif transfer_type == TYPE_TEXT:
            self._receive_text(conn, sender_ip)
        else:
            logger.warning("Unrecognized type %r from %s", transfer_type, sender_ip)
            raise ProtocolError(f"Unknown transfer type: {transfer_type!r}")

    # ------------------------------------------------------------------
    # Receivers
    # ------------------------------------------------------------------

    def _receive_file(self, conn: socket.socket, sender_ip: str) -> None:
        """Confirm with the front-end, then copy the payload to disk."""
        header = read_file_header(conn)
        request = IncomingFile(sender_ip=sender_ip, header=header)
        self._active = request
        logger.info(
            "Incoming file %r (%d bytes) from %s", header.filename, header.size, sender_ip
        )
        self.pending_files.put(request)

        # Block this thread until the user decides (or timeout).
        decided = request.decision_event.wait(timeout=self.confirm_timeout)
        if not decided and request.expire():
            logger.info("No answer for %r within %ss", header.filename, self.confirm_timeout)
        if not request.accepted or not request.destination or request.cancelled:
            logger.info("File %r declined", header.filename)
            return

        logger.info("Writing %r to %s", header.filename, request.destination)
        started = time.monotonic()
        written = recv_file(
            conn,
            request.destination,
            header.size,
            progress_callback=self.on_progress,
            cancel_event=request.cancel_event,
        )
        if written < header.size:
            logger.warning(
                "Receive of %r cancelled after %d of %d bytes; partial file kept",
                header.filename, written, header.size,
            )
            return

        conn.close()
        elapsed = time.monotonic() - started
        logger.info("Written %d bytes to %s in %.3fs", written, request.destination, elapsed)
        self.authority.rotate()
        if self.on_file_received:
            self.on_file_received(
                ReceivedFile(path=request.destination, size=written, elapsed=elapsed)
            )

    def _receive_text(self, conn: socket.socket, sender_ip: str) -> None:
        data = recv_until_eof(conn, limit=MAX_TEXT_SIZE)
        if self._stop_event.is_set():
            # shutdown() by stop() looks like end-of-stream; the text may be cut.
            logger.info("Discarding text from %s; listener stopping", sender_ip)
            return
        text = data.decode("utf-8", errors="replace")
        logger.info("Received %d bytes of text from %s", len(data), sender_ip)
        if self.rotate_on_text:
            self.authority.rotate()
        if self.on_text:
            self.on_text(text, sender_ip)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _report(self, error: BaseException) -> None:
        logger.error("%s: %s", type(error).__name__, error)
        if self.on_error:
            self.on_error(error)
