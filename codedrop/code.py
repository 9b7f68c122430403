"""
Ownership of the shared transfer code.

The CodeAuthority is the only writer of the active code.  Readers call
current() and always see a complete value; observers registered through
subscribe() are told about every rotation.
"""

import logging
import secrets
import threading

from typing_extensions import Callable

from .config import CODE_LENGTH

logger = logging.getLogger(__name__)


def generate_code(length: int = CODE_LENGTH) -> str:
    """Return a random zero-padded decimal code of *length* digits."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def is_valid_code(code: str, length: int = CODE_LENGTH) -> bool:
    return len(code) == length and code.isascii() and code.isdigit()


class CodeAuthority:
    """Holds the active code and rotates it."""

    def __init__(self, initial: str | None = None, length: int = CODE_LENGTH):
        if initial is not None and not is_valid_code(initial, length):
            raise ValueError(f"Code must be {length} digits: {initial!r}")
        self._length = length
        self._lock = threading.Lock()
        self._code = initial if initial is not None else generate_code(length)
        self._subscribers: list[Callable[[str], None]] = []
        logger.info("Transfer code is %s", self._code)

    def current(self) -> str:
        with self._lock:
            return self._code

    def matches(self, code: str) -> bool:
        """True if *code* equals the active code (constant-time compare)."""
        return secrets.compare_digest(code.encode("utf-8"), self.current().encode("utf-8"))

    def rotate(self) -> str:
        """Issue a new code, different from the previous one, and notify observers."""
        with self._lock:
            new_code = generate_code(self._length)
            while new_code == self._code:
                new_code = generate_code(self._length)
            self._code = new_code
            subscribers = list(self._subscribers)
        logger.info("Transfer code rotated to %s", new_code)
        for callback in subscribers:
            callback(new_code)
        return new_code

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Call *callback(code)* after every rotation.  Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
