"""
CodeDrop — send a text or a file to another host on the LAN.

Main entry point.  Either starts the TUI dashboard, a console receiver, or
performs a single send and exits.

Usage:
    codedrop                                   # start TUI mode (default)
    codedrop receive                           # console receiver
    codedrop send-text <host> <code> <message>
    codedrop send-file <host> <code> <path>
    codedrop --port 6000 ...                   # use a custom TCP port
"""

import argparse
import logging
import os
import sys

from . import client
from .client import format_size, get_local_ip, is_valid_ipv4
from .code import is_valid_code
from .config import CODE_LENGTH, DEFAULT_PORT, LOG_FORMAT
from .engine import DropEngine
from .errors import BindError, TransferError
from .server import IncomingFile, ReceivedFile


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure the root logger for console or file output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        filename=log_file,
    )


def _validate_target(host: str, code: str) -> str | None:
    """Return an error message if *host* or *code* is unusable, else None."""
    if not host:
        return "You must specify the recipient's address."
    if not is_valid_ipv4(host):
        return f"{host} is not a valid IPv4 address."
    if not code:
        return "You must supply the code displayed on the recipient's screen."
    if not is_valid_code(code):
        return f"The verification code is {CODE_LENGTH} digits long."
    return None


# ======================================================================
# Console receiver
# ======================================================================


def _print_error(error: BaseException) -> None:
    print(f"  [!] {error}")


def _print_text(text: str, sender_ip: str) -> None:
    print(f"\n  Message from {sender_ip}:")
    print("  " + "-" * 40)
    for line in text.splitlines() or [""]:
        print(f"  {line}")
    print("  " + "-" * 40)


def _print_received(result: ReceivedFile) -> None:
    print(
        f"\n  File has been saved to {result.path} "
        f"({format_size(result.size)}, {result.elapsed:6.3f} seconds)"
    )


def _ask_incoming(request: IncomingFile) -> None:
    """Ask on stdin whether to accept *request* and where to save it."""
    print(
        f"\n  Incoming file from {request.sender_ip}: "
        f"{request.filename} ({format_size(request.size)})"
    )
    answer = input("  Accept? [y/N] ").strip().lower()
    if answer not in ("y", "yes"):
        request.reject()
        print("  Declined.")
        return

    default = request.default_destination()
    path = input(f"  Save to [{default}]: ").strip() or default
    path = os.path.expanduser(path)
    if os.path.isdir(path):
        path = os.path.join(path, os.path.basename(default))
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if not request.accept(path):
        print("  Too late: the sender stopped waiting for an answer.")


def run_receiver(port: int) -> int:
    """Listen until interrupted, confirming incoming files on stdin."""
    errors: list[BaseException] = []

    def on_error(error: BaseException) -> None:
        errors.append(error)
        _print_error(error)

    engine = DropEngine(
        port=port,
        on_error=on_error,
        on_text=_print_text,
        on_file_received=_print_received,
    )
    engine.subscribe(lambda code: print(f"\n  New code: {code}"))
    engine.start()

    print(f"  CodeDrop listening on {get_local_ip()}:{port}")
    print(f"  Code: {engine.current_code()}")
    print("  Press Ctrl+C to quit.\n")

    try:
        while engine.server.running:
            request = engine.next_incoming(timeout=0.5)
            if request is None or request.cancelled:
                continue
            try:
                _ask_incoming(request)
            except EOFError:
                request.reject()
                break
    except KeyboardInterrupt:
        print("\n  Shutting down...")
    finally:
        engine.stop()

    return 1 if any(isinstance(e, BindError) for e in errors) else 0


# ======================================================================
# One-shot senders
# ======================================================================


def run_send_text(host: str, code: str, message: str, port: int) -> int:
    problem = _validate_target(host, code)
    if problem:
        _print_error(problem)
        return 2
    try:
        client.send_text(host, code, message, port=port)
    except (TransferError, OSError) as e:
        _print_error(e)
        return 1
    print(f"  Sent message to {host}")
    return 0


def run_send_file(host: str, code: str, filepath: str, port: int) -> int:
    problem = _validate_target(host, code)
    if problem:
        _print_error(problem)
        return 2
    try:
        client.send_file(host, code, filepath, port=port)
    except FileNotFoundError as e:
        _print_error(f"{e}. Please select another file.")
        return 1
    except (TransferError, OSError) as e:
        _print_error(e)
        return 1
    print(f"  Sent {os.path.basename(filepath)} to {host}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="codedrop", description="CodeDrop LAN text and file transfer"
    )
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help="TCP port to listen on / send to"
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--log-file", default=None, help="Write logs to this file")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("tui", help="Launch the TUI dashboard (default)")
    sub.add_parser("receive", help="Listen and receive in the console")

    p_text = sub.add_parser("send-text", help="Send a text message")
    p_text.add_argument("host")
    p_text.add_argument("code")
    p_text.add_argument("message", nargs="+")

    p_file = sub.add_parser("send-file", help="Send a file")
    p_file.add_argument("host")
    p_file.add_argument("code")
    p_file.add_argument("path")

    args = parser.parse_args(argv)

    if args.command in (None, "tui"):
        # The dashboard owns the terminal; logs go to a file or its log panel.
        setup_logging(args.log_level, args.log_file or os.devnull)
        from .tui import run_tui

        run_tui(args.port)
        return 0

    setup_logging(args.log_level, args.log_file)
    if args.command == "receive":
        return run_receiver(args.port)
    if args.command == "send-text":
        return run_send_text(args.host, args.code, " ".join(args.message), args.port)
    return run_send_file(args.host, args.code, args.path, args.port)


if __name__ == "__main__":
    sys.exit(main())
