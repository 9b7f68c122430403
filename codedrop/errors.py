"""
Exception types raised by the transfer engine.

Every failure the engine knows about derives from TransferError so the
presentation layer can catch one type.  A missing local file on send is
reported with the builtin FileNotFoundError instead, so callers can tell it
apart and ask for another file.
"""


class TransferError(Exception):
    """Base class for transfer engine failures."""


class BindError(TransferError):
    """The listener could not bind its port."""


class ConnectError(TransferError):
    """The remote host refused or could not be reached."""


class ProtocolError(TransferError):
    """The peer sent something that does not follow the wire format."""


class AuthError(TransferError):
    """The handshake carried a code other than the active one.

    Handled silently by the dispatcher; never reaches the error sink.
    """


class TransferIOError(TransferError, OSError):
    """A read or write failed in the middle of a transfer."""
