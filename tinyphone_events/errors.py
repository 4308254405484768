# =============================================================================
# Tinyphone Events -- Error Types
# =============================================================================


class TinyphoneError(Exception):
    """Base exception for all Tinyphone event client errors."""


class TinyphoneConnectionError(TinyphoneError):
    """The event stream could not be established (or a send failed)."""


class TinyphoneTimeoutError(TinyphoneConnectionError):
    """Opening the event stream timed out."""


class TinyphoneNotConnectedError(TinyphoneError):
    """An operation needed an open transport and there was none."""


class TinyphoneDisposedError(TinyphoneError):
    """The client was used after it had been torn down."""


class TinyphoneReceiveError(TinyphoneError):
    """The transport failed while the receive cycle was running."""


class TinyphoneDecodeError(TinyphoneError):
    """A payload could not be decoded as the requested message kind.

    Only raised inside classification, which always degrades to a
    fallback instead of letting this escape.
    """
