"""
CodeDrop TUI — a terminal dashboard for sending and receiving.

Built with Textual.  Launched via `codedrop` (or `codedrop tui`).
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from datetime import datetime

from rich.markup import escape
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import (
    Button,
    Footer,
    Header,
    Input,
    Label,
    ProgressBar,
    RichLog,
    Static,
    TextArea,
)

from .client import format_size, get_local_ip, is_valid_ipv4
from .code import is_valid_code
from .config import CODE_LENGTH, DEFAULT_PORT
from .engine import DropEngine
from .server import IncomingFile, ReceivedFile

# Files bigger than this get a progress dialog while sending.
SEND_PROGRESS_THRESHOLD = 1024 * 1024


# ==============================================================================
# Transfer Progress Modal
# ==============================================================================


class TransferProgressScreen(ModalScreen):
    """Modal showing transfer progress with progress bar."""

    BINDINGS = [Binding("escape", "close", "Close")]

    def __init__(
        self,
        operation: str,
        filename: str,
        total_size: int,
        cancel_event: threading.Event | None = None,
    ):
        super().__init__()
        self.operation = operation
        self.filename = filename
        self.total_size = total_size
        self.cancel_event = cancel_event
        self._completed = False

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Label(f"{self.operation}: {escape(self.filename)}", classes="dialog-title")
            yield Label(f"0 B / {format_size(self.total_size)}", id="transfer-status")
            yield ProgressBar(total=max(self.total_size, 1), show_eta=False, id="progress-bar")
            yield Button("Cancel", variant="error", id="btn-cancel")

    def update_progress(self, current: int) -> None:
        """Update the progress bar and status."""
        if not self.is_mounted or self._completed:
            return
        self.query_one("#progress-bar", ProgressBar).update(progress=current)
        percent = (current / self.total_size * 100) if self.total_size > 0 else 100
        self.query_one("#transfer-status", Label).update(
            f"{format_size(current)} / {format_size(self.total_size)} ({percent:.1f}%)"
        )

    def mark_complete(self, success: bool, message: str | None = None) -> None:
        """Mark transfer as complete and turn Cancel into Close."""
        self._completed = True
        if not self.is_mounted:
            return
        if success:
            self.query_one("#progress-bar", ProgressBar).update(
                progress=max(self.total_size, 1)
            )
        if message:
            self.query_one("#transfer-status", Label).update(escape(message))
        cancel_btn = self.query_one("#btn-cancel", Button)
        cancel_btn.label = "Close"
        cancel_btn.variant = "success" if success else "warning"

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-cancel":
            self.action_close()

    def action_close(self) -> None:
        if not self._completed and self.cancel_event is not None:
            self.cancel_event.set()
        self.dismiss(self._completed)


# ==============================================================================
# Incoming File Modal
# ==============================================================================


class IncomingFileScreen(ModalScreen[str | None]):
    """Ask whether to accept an incoming file and where to save it."""

    BINDINGS = [Binding("escape", "reject", "Reject")]

    def __init__(self, request: IncomingFile):
        super().__init__()
        self.request = request

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Label("Incoming file", classes="dialog-title")
            yield Static(
                f"[bold]{escape(self.request.filename)}[/] "
                f"({format_size(self.request.size)}) from "
                f"[#5ec4ff]{self.request.sender_ip}[/]\n"
                "Do you want to accept?"
            )
            yield Input(value=self.request.default_destination(), id="dest-input")
            with Horizontal(classes="btn-bar"):
                yield Button("Accept", variant="success", id="incoming-accept")
                yield Button("Reject", variant="error", id="incoming-reject")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "incoming-accept":
            self.dismiss(self.query_one("#dest-input", Input).value.strip() or None)
        elif event.button.id == "incoming-reject":
            self.dismiss(None)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value.strip() or None)

    def action_reject(self) -> None:
        self.dismiss(None)


# ==============================================================================
# Incoming Text Modal
# ==============================================================================


class TextMessageScreen(ModalScreen):
    """Display a received text message."""

    BINDINGS = [Binding("escape", "dismiss", "Close")]

    def __init__(self, text: str, sender_ip: str):
        super().__init__()
        self.text = text
        self.sender_ip = sender_ip

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Label(f"Incoming text from {self.sender_ip}", classes="dialog-title")
            yield TextArea(self.text, read_only=True, id="text-view")
            yield Button("Close  (Esc)", id="text-close")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "text-close":
            self.dismiss()


# ==============================================================================
# Help / Exit Modals
# ==============================================================================


class HelpScreen(ModalScreen):
    """Full help overlay."""

    BINDINGS = [Binding("escape", "dismiss", "Close")]

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Label("CODEDROP  —  Help", classes="dialog-title")
            yield Static(
                "[bold #5ec4ff]Receiving[/]\n"
                "\n"
                "  Give the sender your address and the code shown at the top.\n"
                "  The code changes after every received file.\n"
                "\n"
                "[bold #5ec4ff]Sending[/]\n"
                "\n"
                "  Fill in the recipient's IPv4 address and their code, then\n"
                "  either type a message or enter a file path.\n"
                "\n"
                "[bold #5ec4ff]Keybindings[/]\n"
                "\n"
                "  [#e0c97f]F1[/]          Show this help\n"
                "  [#e0c97f]Ctrl+S[/]      Send\n"
                "  [#e0c97f]Tab[/]         Cycle focus between fields\n"
                "  [#e0c97f]Ctrl+Q[/]      Quit CodeDrop\n"
            )
            yield Button("Close  (Esc)", id="help-close-btn")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "help-close-btn":
            self.dismiss()


class ConfirmExitScreen(ModalScreen[bool]):
    """Ask before shutting the listener down."""

    BINDINGS = [Binding("escape", "stay", "Cancel")]

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Label("Exit", classes="dialog-title")
            yield Static("Are you sure you want to exit CodeDrop?")
            with Horizontal(classes="btn-bar"):
                yield Button("Exit", variant="error", id="exit-yes")
                yield Button("Stay", id="exit-no")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "exit-yes")

    def action_stay(self) -> None:
        self.dismiss(False)


# ==============================================================================
# Log bridge
# ==============================================================================


class PanelLogHandler(logging.Handler):
    """Mirror warnings and errors from the engine into the log panel."""

    def __init__(self, app: "CodeDropApp"):
        super().__init__(level=logging.WARNING)
        self.app = app

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = f"[#e0c97f]{record.levelname}[/] {escape(self.format(record))}"
            if threading.get_ident() == self.app.ui_thread_id:
                self.app.log_line(message)
            else:
                self.app.call_from_thread(self.app.log_line, message)
        except Exception:
            self.handleError(record)


# ==============================================================================
# Main TUI App
# ==============================================================================


class CodeDropApp(App):
    """CodeDrop — Terminal Dashboard."""

    TITLE = "CODEDROP"
    SUB_TITLE = "LAN text & file transfer"
    ENABLE_COMMAND_PALETTE = False

    CSS = """
    #info-bar { height: 3; padding: 0 2; background: $panel; }
    #address-label { width: 1fr; content-align: left middle; }
    #code-label { width: auto; content-align: right middle; text-style: bold; color: #e0c97f; }
    #send-panel { height: auto; padding: 1 2; }
    #send-panel Input { margin-bottom: 1; }
    #message-input { height: 6; margin-bottom: 1; }
    .btn-bar { height: auto; align: center middle; }
    .btn-bar Button { margin: 0 1; }
    #log-panel { height: 1fr; border-top: solid $primary; }
    .dialog {
        width: 70; height: auto; max-height: 90%;
        padding: 1 2; border: thick $primary; background: $surface;
    }
    .dialog-title { text-style: bold; margin-bottom: 1; }
    #text-view { height: 12; }
    ModalScreen { align: center middle; }
    """

    BINDINGS = [
        Binding("f1", "show_help", "Help", show=True),
        Binding("ctrl+s", "send", "Send", show=True),
        Binding("ctrl+q", "quit_app", "Quit", show=True),
    ]

    def __init__(self, port: int = DEFAULT_PORT):
        super().__init__()
        self.port = port
        self.ui_thread_id: int | None = None
        self._progress_screen: TransferProgressScreen | None = None
        self._log_handler = PanelLogHandler(self)
        self.engine = DropEngine(
            port=port,
            on_error=lambda e: self.call_from_thread(self._on_receive_error, e),
            on_send_error=lambda e: self.call_from_thread(self._on_send_error, e),
            on_text=lambda t, ip: self.call_from_thread(self._on_text, t, ip),
            on_progress=lambda cur, total: self.call_from_thread(self._on_progress, cur),
            on_file_received=lambda r: self.call_from_thread(self._on_file_received, r),
        )

    # --------------------------------------------------------------------------
    # Layout
    # --------------------------------------------------------------------------

    def compose(self) -> ComposeResult:
        yield Header()

        with Horizontal(id="info-bar"):
            yield Label(f"Your address: {get_local_ip()}:{self.port}", id="address-label")
            yield Label("Code: ------", id="code-label")

        with Vertical(id="send-panel"):
            yield Input(placeholder="Recipient IPv4 address", id="host-input")
            yield Input(
                placeholder=f"Recipient's {CODE_LENGTH}-digit code",
                max_length=CODE_LENGTH,
                restrict=r"\d*",
                id="code-input",
            )
            yield TextArea(id="message-input")
            yield Input(placeholder="...or a file path to send", id="file-input")
            with Horizontal(classes="btn-bar"):
                yield Button("Send", variant="primary", id="btn-send")
                yield Button("Clear", id="btn-clear")

        with Vertical(id="log-panel"):
            yield RichLog(id="log-view", highlight=True, markup=True)

        yield Footer()

    # --------------------------------------------------------------------------
    # Startup / shutdown
    # --------------------------------------------------------------------------

    def on_mount(self) -> None:
        self.ui_thread_id = threading.get_ident()
        logging.getLogger("codedrop").addHandler(self._log_handler)

        self._show_code(self.engine.current_code())
        self.engine.subscribe(lambda code: self.call_from_thread(self._on_code_rotated, code))
        self.engine.start()
        self.set_interval(0.5, self._poll_incoming)

        self.log_line(f"CodeDrop started  tcp_port={self.port}")
        self.log_line("Waiting for incoming transfers...")

    # --------------------------------------------------------------------------
    # Logging & notifications
    # --------------------------------------------------------------------------

    def log_line(self, message: str) -> None:
        log_view = self.query_one("#log-view", RichLog)
        ts = datetime.now().strftime("%H:%M:%S")
        log_view.write(f"[#41505e]{ts}[/]  {message}")

    def _show_code(self, code: str) -> None:
        self.query_one("#code-label", Label).update(f"Code: {code}")

    def _on_code_rotated(self, code: str) -> None:
        self._show_code(code)
        self.log_line(f"New code: [bold #e0c97f]{code}[/]")

    # --------------------------------------------------------------------------
    # Engine callbacks (already marshalled onto the app thread)
    # --------------------------------------------------------------------------

    def _on_receive_error(self, error: BaseException) -> None:
        self.log_line(f"[#e74c3c]Error:[/] {escape(str(error))}")
        if self._progress_screen is not None:
            self._progress_screen.mark_complete(False, str(error))
            self._progress_screen = None
        self.notify(str(error), title="Error", severity="error")

    def _on_send_error(self, error: BaseException) -> None:
        # The sending worker closes its own progress dialog.
        self.log_line(f"[#e74c3c]Send failed:[/] {escape(str(error))}")
        if isinstance(error, FileNotFoundError):
            self.notify(
                "The file you selected cannot be found. Please select a new file.",
                severity="error",
            )
            file_input = self.query_one("#file-input", Input)
            file_input.value = ""
            file_input.focus()
        else:
            self.notify(str(error), title="Error", severity="error")

    def _on_text(self, text: str, sender_ip: str) -> None:
        self.log_line(f"[#00ff9f]Text[/] from [#5ec4ff]{sender_ip}[/]")
        self.push_screen(TextMessageScreen(text, sender_ip))

    def _on_progress(self, current: int) -> None:
        if self._progress_screen is not None:
            self._progress_screen.update_progress(current)

    def _on_file_received(self, result: ReceivedFile) -> None:
        if self._progress_screen is not None:
            self._progress_screen.mark_complete(
                True, f"Complete: {format_size(result.size)}"
            )
            self._progress_screen = None
        self.log_line(
            f"[#00ff9f]Saved[/] [#718ca1]{escape(result.path)}[/] "
            f"({format_size(result.size)}, {result.elapsed:.3f}s)"
        )
        self.notify(f"File has been saved to {result.path}", severity="information")

    # --------------------------------------------------------------------------
    # Incoming files
    # --------------------------------------------------------------------------

    def _poll_incoming(self) -> None:
        try:
            request = self.engine.pending_files.get_nowait()
        except queue.Empty:
            return
        if request.cancelled:
            return
        self.log_line(
            f"Incoming file [bold]{escape(request.filename)}[/] "
            f"({format_size(request.size)}) from [#5ec4ff]{request.sender_ip}[/]"
        )
        self.push_screen(
            IncomingFileScreen(request),
            callback=lambda dest: self._handle_incoming_result(request, dest),
        )

    def _handle_incoming_result(self, request: IncomingFile, destination: str | None) -> None:
        if destination is None or request.cancelled:
            request.reject()
            self.log_line(f"Declined [bold]{escape(request.filename)}[/]")
            return

        destination = os.path.expanduser(destination)
        if os.path.isdir(destination):
            destination = os.path.join(
                destination, os.path.basename(request.default_destination())
            )
        try:
            parent = os.path.dirname(destination)
            if parent:
                os.makedirs(parent, exist_ok=True)
        except OSError as e:
            request.reject()
            self._on_receive_error(e)
            return

        if not request.accept(destination):
            self.log_line(
                f"[#e0c97f]Too late:[/] {escape(request.sender_ip)} stopped waiting "
                f"for an answer about [bold]{escape(request.filename)}[/]"
            )
            self.notify("The sender stopped waiting for an answer.", severity="warning")
            return
        # Progress is marshalled onto this thread, so none arrives before the push.
        self._progress_screen = TransferProgressScreen(
            "Receiving", request.filename, request.size, request.cancel_event
        )
        self.push_screen(self._progress_screen, callback=self._on_progress_closed)

    def _on_progress_closed(self, completed: bool) -> None:
        if not completed:
            self.log_line("[#e0c97f]Transfer cancelled[/]; partial file kept.")
        self._progress_screen = None

    # --------------------------------------------------------------------------
    # Actions
    # --------------------------------------------------------------------------

    def action_show_help(self) -> None:
        self.push_screen(HelpScreen())

    def action_quit_app(self) -> None:
        def maybe_exit(confirmed: bool) -> None:
            if confirmed:
                self.log_line("Shutting down...")
                self._shutdown()

        self.push_screen(ConfirmExitScreen(), callback=maybe_exit)

    @work(thread=True)
    def _shutdown(self) -> None:
        # Stop while the app still runs: the session thread may be waiting on
        # call_from_thread, which needs the UI thread free.
        self.engine.stop()
        self.call_from_thread(self.exit)

    def action_send(self) -> None:
        host = self.query_one("#host-input", Input).value.strip()
        code = self.query_one("#code-input", Input).value.strip()
        message = self.query_one("#message-input", TextArea).text
        filepath = self.query_one("#file-input", Input).value.strip()

        if not host:
            self._warn("You must specify the recipient's address.", "#host-input")
            return
        if not is_valid_ipv4(host):
            self._warn(f"{host} is not a valid IPv4 address.", "#host-input")
            return
        if not code:
            self._warn(
                "You must supply the code displayed on the recipient's screen.",
                "#code-input",
            )
            return
        if not is_valid_code(code):
            self._warn(f"The verification code is {CODE_LENGTH} digits long.", "#code-input")
            return

        if message:
            self._send_text_async(host, code, message)
        elif filepath:
            self._send_file_async(host, code, os.path.expanduser(filepath))
        else:
            self._warn("You must either select a file or write a message.", "#message-input")

    def _warn(self, message: str, focus: str) -> None:
        self.log_line(f"[#e0c97f]Warning:[/] {escape(message)}")
        self.notify(message, severity="warning")
        self.query_one(focus).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-send":
            self.action_send()
        elif event.button.id == "btn-clear":
            self.query_one("#message-input", TextArea).text = ""
            self.query_one("#file-input", Input).value = ""

    # --------------------------------------------------------------------------
    # Sending (background workers)
    # --------------------------------------------------------------------------

    @work(thread=True)
    def _send_text_async(self, host: str, code: str, text: str) -> None:
        self.call_from_thread(self.log_line, f"Sending text to [#5ec4ff]{host}[/]...")
        if self.engine.send_text(host, code, text, port=self.port):
            self.call_from_thread(self.log_line, f"[#00ff9f]Sent[/] text to {host}")
            self.call_from_thread(self.notify, f"Sent message to {host}")

    @work(thread=True)
    def _send_file_async(self, host: str, code: str, filepath: str) -> None:
        filename = os.path.basename(filepath)
        self.call_from_thread(
            self.log_line,
            f"Sending [bold]{escape(filename)}[/] to [#5ec4ff]{host}[/]...",
        )

        progress_screen = None
        if os.path.isfile(filepath) and os.path.getsize(filepath) > SEND_PROGRESS_THRESHOLD:
            progress_screen = TransferProgressScreen(
                "Sending", filename, os.path.getsize(filepath)
            )
            self.call_from_thread(self.push_screen, progress_screen)

        def progress_callback(current: int, total: int) -> None:
            if progress_screen is not None:
                self.call_from_thread(progress_screen.update_progress, current)

        sent = self.engine.send_file(
            host, code, filepath, port=self.port, progress_callback=progress_callback
        )
        if progress_screen is not None:
            self.call_from_thread(
                progress_screen.mark_complete, sent, "Complete" if sent else "Failed"
            )
        if sent:
            self.call_from_thread(
                self.log_line, f"[#00ff9f]Sent[/] {escape(filename)} to {host}"
            )
            self.call_from_thread(self.notify, f"Sent {filename}")


# ==============================================================================
# Entry point (called from peer.py)
# ==============================================================================


def run_tui(port: int = DEFAULT_PORT) -> None:
    """Launch the CodeDrop TUI."""
    app = CodeDropApp(port)
    try:
        app.run()
    finally:
        logging.getLogger("codedrop").removeHandler(app._log_handler)
        # Exits that bypass the quit dialog (e.g. ctrl+c) land here.
        app.engine.stop()
