# =============================================================================
# Tinyphone Events -- WebSocket Transport
# =============================================================================
#
# Thin adapter over the websockets asyncio client. Exposes the stream as
# Fragment values so framing stays independent of the library.
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Protocol

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosedOK
from websockets.protocol import State

from .constants import USER_AGENT, WS_CLOSE_NORMAL
from .types import Fragment, FrameKind

if TYPE_CHECKING:
    from .config import TinyphoneSettings


class Transport(Protocol):
    """What :class:`~tinyphone_events.connection.ConnectionManager` needs
    from a duplex connection."""

    @property
    def is_open(self) -> bool: ...

    def fragments(self) -> AsyncIterator[Fragment]: ...

    async def send(self, text: str) -> None: ...

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None: ...


TransportFactory = Callable[[str, "TinyphoneSettings"], Awaitable[Transport]]


class WebSocketTransport:
    """One physical WebSocket connection."""

    def __init__(self, ws: websockets.asyncio.client.ClientConnection) -> None:
        self._ws = ws

    @classmethod
    async def open(cls, url: str, settings: TinyphoneSettings) -> WebSocketTransport:
        """Open a connection to *url*.

        Raises:
            TimeoutError: If the handshake exceeds ``settings.timeout_seconds``.
            OSError, websockets.exceptions.InvalidHandshake: On other failures.
        """
        ws = await websockets.asyncio.client.connect(
            url,
            open_timeout=settings.timeout_seconds,
            close_timeout=settings.close_timeout,
            max_size=settings.max_message_size,
            user_agent_header=USER_AGENT,
        )
        return cls(ws)

    @property
    def is_open(self) -> bool:
        return self._ws.state is State.OPEN

    async def fragments(self) -> AsyncIterator[Fragment]:
        """Yield fragments until the peer closes.

        Every streamed chunk is a non-final fragment; an empty final
        fragment marks the end of each logical message. A normal close
        yields one CLOSE fragment and ends the iteration. Abnormal closes
        raise ``ConnectionClosedError``.
        """
        while True:
            kind = FrameKind.TEXT
            try:
                async for chunk in self._ws.recv_streaming():
                    if isinstance(chunk, str):
                        kind = FrameKind.TEXT
                        yield Fragment(kind, chunk.encode("utf-8"))
                    else:
                        kind = FrameKind.BINARY
                        yield Fragment(kind, bytes(chunk))
            except ConnectionClosedOK as exc:
                rcvd = exc.rcvd
                yield Fragment(
                    FrameKind.CLOSE,
                    final=True,
                    close_code=rcvd.code if rcvd is not None else None,
                    close_reason=rcvd.reason if rcvd is not None else "",
                )
                return
            yield Fragment(kind, final=True)

    async def send(self, text: str) -> None:
        await self._ws.send(text)

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        await self._ws.close(code, reason)
