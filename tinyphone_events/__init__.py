"""Tinyphone event stream client.

Keeps a WebSocket open to a Tinyphone server's ``/events`` endpoint,
reconnecting after every drop, and delivers account, call, welcome, raw,
status and error notifications.

Async usage::

    from tinyphone_events import EventKind, connect

    async with connect("http://localhost:6060") as client:
        async for event in client:
            if event.kind is EventKind.ACCOUNT:
                print(event.payload.account, event.payload.status)

Sync usage::

    from tinyphone_events import SyncTinyphoneClient

    client = SyncTinyphoneClient("http://localhost:6060")
    client.start()
    event = client.recv(timeout=5.0)
    client.close()
"""

from ._version import __version__
from .classifier import MessageClassifier, decode_or_default
from .client import AsyncTinyphoneClient
from .config import TinyphoneSettings, events_url
from .errors import (
    TinyphoneConnectionError,
    TinyphoneDecodeError,
    TinyphoneDisposedError,
    TinyphoneError,
    TinyphoneNotConnectedError,
    TinyphoneReceiveError,
    TinyphoneTimeoutError,
)
from .framing import FrameReassembler
from .sync_client import SyncTinyphoneClient
from .types import (
    AccountEvent,
    CallEvent,
    Classification,
    ConnectionStats,
    ConnectionStatus,
    EventKind,
    MessageKind,
    RawMessage,
    StatusChange,
    TinyphoneEvent,
    WelcomeNotice,
)


def connect(
    base_url: str,
    **kwargs,
) -> AsyncTinyphoneClient:
    """Create a Tinyphone event client.

    Use as an async context manager; entering it starts the reconnection
    loop in the background. Keyword arguments are forwarded to
    :class:`AsyncTinyphoneClient` -- common ones: ``settings``,
    ``queue_size``.

    Args:
        base_url: HTTP(S) address of the Tinyphone API, e.g.
            ``"http://localhost:6060"``.
        **kwargs: Passed to :class:`AsyncTinyphoneClient`.

    Raises:
        ValueError: If *base_url* is not an http(s) or ws(s) URL.
    """
    return AsyncTinyphoneClient(base_url, **kwargs)


__all__ = [
    "__version__",
    "connect",
    "events_url",
    "decode_or_default",
    "AsyncTinyphoneClient",
    "SyncTinyphoneClient",
    "TinyphoneSettings",
    "MessageClassifier",
    "FrameReassembler",
    "TinyphoneEvent",
    "EventKind",
    "MessageKind",
    "ConnectionStatus",
    "ConnectionStats",
    "StatusChange",
    "RawMessage",
    "Classification",
    "WelcomeNotice",
    "AccountEvent",
    "CallEvent",
    "TinyphoneError",
    "TinyphoneConnectionError",
    "TinyphoneTimeoutError",
    "TinyphoneNotConnectedError",
    "TinyphoneDisposedError",
    "TinyphoneReceiveError",
    "TinyphoneDecodeError",
]
