"""
Facade over the code authority, the listener and the sender functions.

Front-ends talk to a DropEngine only: it owns the active code and runs the
listener.  Listener failures go to on_error; send failures go to
on_send_error, or to on_error when no separate handler is given.
"""

import logging
import queue

from typing_extensions import Callable

from . import client
from .code import CodeAuthority
from .config import DEFAULT_PORT
from .errors import TransferError
from .server import IncomingFile, ReceivedFile, TransferServer

logger = logging.getLogger(__name__)


class DropEngine:
    """One running instance: a code, a listener, and a way to send."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        on_error: Callable[[BaseException], None] | None = None,
        on_send_error: Callable[[BaseException], None] | None = None,
        on_text: Callable[[str, str], None] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
        on_file_received: Callable[[ReceivedFile], None] | None = None,
        authority: CodeAuthority | None = None,
        **server_options,
    ):
        self.on_error = on_error
        self.on_send_error = on_send_error or on_error
        self.authority = authority or CodeAuthority()
        self.server = TransferServer(
            self.authority,
            port=port,
            on_error=self._report,
            on_text=on_text,
            on_progress=on_progress,
            on_file_received=on_file_received,
            **server_options,
        )

    # ------------------------------------------------------------------
    # Code
    # ------------------------------------------------------------------

    def current_code(self) -> str:
        return self.authority.current()

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Observe code rotations.  Returns an unsubscribe function."""
        return self.authority.subscribe(callback)

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    @property
    def port(self) -> int:
        return self.server.port

    @property
    def pending_files(self):
        return self.server.pending_files

    def next_incoming(self, timeout: float | None = None) -> IncomingFile | None:
        """Return the next file awaiting confirmation, or None after *timeout*."""
        try:
            return self.server.pending_files.get(timeout=timeout)
        except queue.Empty:
            return None

    def start(self) -> None:
        self.server.start()

    def stop(self) -> None:
        self.server.stop()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_text(self, host: str, code: str, text: str, port: int = DEFAULT_PORT) -> bool:
        """Send *text*; failures go to on_send_error and return False."""
        try:
            client.send_text(host, code, text, port=port)
        except (TransferError, OSError) as e:
            logger.error("Sending text to %s failed: %s", host, e)
            self._report_send(e)
            return False
        return True

    def send_file(
        self,
        host: str,
        code: str,
        filepath: str,
        port: int = DEFAULT_PORT,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> bool:
        """Send a file; failures go to on_send_error and return False.

        A missing local file is reported as the builtin FileNotFoundError so
        the caller can ask for another one.
        """
        try:
            client.send_file(host, code, filepath, port=port, progress_callback=progress_callback)
        except (TransferError, OSError) as e:
            logger.error("Sending %s to %s failed: %s", filepath, host, e)
            self._report_send(e)
            return False
        return True

    def _report(self, error: BaseException) -> None:
        if self.on_error:
            self.on_error(error)

    def _report_send(self, error: BaseException) -> None:
        if self.on_send_error:
            self.on_send_error(error)
