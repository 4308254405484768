# =============================================================================
# Tinyphone Events -- Connection Manager
# =============================================================================
#
# Physical connection lifecycle: connect, receive cycle, send, disconnect.
# Owns the transport handle and the connection status (single writer).
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Any, Callable

from ._logging import logger
from .config import TinyphoneSettings
from .constants import WS_CLOSE_NORMAL
from .errors import (
    TinyphoneConnectionError,
    TinyphoneDisposedError,
    TinyphoneNotConnectedError,
    TinyphoneReceiveError,
    TinyphoneTimeoutError,
)
from .framing import FrameReassembler
from .transport import Transport, TransportFactory, WebSocketTransport
from .types import ConnectionStatus, FrameKind, RawMessage, StatusChange


class ConnectionManager:
    """Manages one event stream connection at a time.

    This is the low-level transport layer. ``AsyncTinyphoneClient`` drives
    it from its reconnection loop; nothing else touches the transport.

    Args:
        settings: Endpoint and timeouts.
        on_status_change: Called once per actual status transition.
        on_error: Called with the error when a connect attempt fails.
        transport_factory: Opens a transport for a URL. Defaults to
            :meth:`WebSocketTransport.open`.
    """

    def __init__(
        self,
        settings: TinyphoneSettings,
        *,
        on_status_change: Callable[[StatusChange], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._settings = settings
        self._url = settings.events_url
        self._on_status_change = on_status_change
        self._on_error = on_error
        self._transport_factory = transport_factory or WebSocketTransport.open

        self._transport: Transport | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._reassembler = FrameReassembler()
        self._send_lock = asyncio.Lock()
        self._recv_task: asyncio.Task[None] | None = None
        self._disposed = False

    # -- Properties -----------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return (
            self._transport is not None
            and self._transport.is_open
            and self._status == ConnectionStatus.CONNECTED
        )

    @property
    def disposed(self) -> bool:
        return self._disposed

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Open the event stream.

        No-op while already connected or connecting.

        Raises:
            TinyphoneDisposedError: After :meth:`dispose`.
            TinyphoneTimeoutError: If the handshake timed out.
            TinyphoneConnectionError: If the connection could not be opened.
        """
        if self._disposed:
            raise TinyphoneDisposedError("ConnectionManager has been disposed")
        if self._status in (ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING):
            return

        self._set_status(ConnectionStatus.CONNECTING)
        await self._release_transport()
        logger.info("Connecting to WebSocket: %s", self._url)

        try:
            transport = await self._transport_factory(self._url, self._settings)
        except asyncio.CancelledError:
            self._set_status(ConnectionStatus.DISCONNECTED)
            raise
        except TimeoutError as exc:
            error = TinyphoneTimeoutError(
                f"Connection to {self._url} timed out after {self._settings.timeout_seconds}s"
            )
            self._fail(error)
            raise error from exc
        except Exception as exc:
            error = TinyphoneConnectionError(f"Failed to connect to {self._url}: {exc}")
            self._fail(error)
            raise error from exc

        self._transport = transport
        self._reassembler.reset()
        self._set_status(ConnectionStatus.CONNECTED)
        logger.info("WebSocket connected successfully")

    async def disconnect(self) -> None:
        """Stop receiving, close the transport, end DISCONNECTED.

        Safe to call repeatedly and after :meth:`dispose`. Close failures
        are logged, never raised.
        """
        recv_task = self._recv_task
        self._recv_task = None
        if recv_task is not None and recv_task is not asyncio.current_task():
            recv_task.cancel()
            await asyncio.gather(recv_task, return_exceptions=True)

        had_transport = self._transport is not None
        await self._release_transport()
        self._set_status(ConnectionStatus.DISCONNECTED)
        if had_transport:
            logger.info("WebSocket disconnected")

    async def dispose(self) -> None:
        """Disconnect and mark permanently torn down."""
        if self._disposed:
            return
        self._disposed = True
        await self.disconnect()
        logger.debug("ConnectionManager disposed")

    async def prepare_reconnect(self) -> None:
        """Drop the dead transport and enter RECONNECTING."""
        await self._release_transport()
        self._set_status(ConnectionStatus.RECONNECTING)

    # -- Send -----------------------------------------------------------------

    async def send(self, text: str) -> None:
        """Send *text* as a single text frame.

        Concurrent callers are serialized.

        Raises:
            TinyphoneDisposedError: After :meth:`dispose`.
            TinyphoneNotConnectedError: If the transport is not open.
            TinyphoneConnectionError: If the transport fails mid-send.
        """
        if self._disposed:
            raise TinyphoneDisposedError("ConnectionManager has been disposed")

        async with self._send_lock:
            transport = self._transport
            if transport is None or not transport.is_open:
                raise TinyphoneNotConnectedError("WebSocket is not connected")
            try:
                await transport.send(text)
            except Exception as exc:
                raise TinyphoneConnectionError(f"Send failed: {exc}") from exc

        logger.debug("Sent WebSocket message: %s", text)

    # -- Receive --------------------------------------------------------------

    async def receive(self, on_message: Callable[[RawMessage], Any]) -> None:
        """Run one receive cycle, calling *on_message* per complete message.

        Returns when the peer closes or the cycle is cancelled through
        :meth:`cancel_receive` / :meth:`disconnect`.

        Raises:
            TinyphoneDisposedError: After :meth:`dispose`.
            TinyphoneNotConnectedError: If there is no transport.
            TinyphoneReceiveError: If the transport fails while receiving.
        """
        if self._disposed:
            raise TinyphoneDisposedError("ConnectionManager has been disposed")
        transport = self._transport
        if transport is None:
            raise TinyphoneNotConnectedError("WebSocket is not connected")

        task = asyncio.create_task(self._receive_cycle(transport, on_message))
        self._recv_task = task
        try:
            # wait() does not forward our own cancellation to the task
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if task.done() and self._recv_task is task:
                self._recv_task = None

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            raise exc

    def cancel_receive(self) -> None:
        """Ask the running receive cycle (if any) to stop."""
        if self._recv_task is not None and not self._recv_task.done():
            self._recv_task.cancel()

    async def _receive_cycle(
        self,
        transport: Transport,
        on_message: Callable[[RawMessage], Any],
    ) -> None:
        self._reassembler.reset()
        try:
            async with aclosing(transport.fragments()) as fragments:
                async for fragment in fragments:
                    if fragment.kind is FrameKind.CLOSE:
                        logger.info(
                            "WebSocket close received: %s - %s",
                            fragment.close_code,
                            fragment.close_reason,
                        )
                        break

                    message = self._reassembler.feed(fragment)
                    if message is not None:
                        logger.debug(
                            "Received WebSocket message #%d: %s",
                            message.sequence,
                            message.text,
                        )
                        try:
                            on_message(message)
                        except Exception:
                            logger.exception(
                                "Failed to process message #%d", message.sequence
                            )
        except asyncio.CancelledError:
            logger.debug("Receive cycle cancelled")
        except Exception as exc:
            logger.error("WebSocket error occurred: %s", exc)
            raise TinyphoneReceiveError(f"WebSocket receive failed: {exc}") from exc
        finally:
            self._reassembler.reset()

    # -- Internal ---------------------------------------------------------------

    async def _release_transport(self) -> None:
        """Close (best effort) and forget the current transport."""
        transport = self._transport
        self._transport = None
        if transport is None or not transport.is_open:
            return
        try:
            await transport.close(WS_CLOSE_NORMAL, "Client disconnect")
        except Exception as exc:
            logger.warning("Error during WebSocket close: %s", exc)

    def _fail(self, error: Exception) -> None:
        logger.error("Failed to connect to WebSocket: %s", error)
        self._set_status(ConnectionStatus.FAILED)
        if self._on_error:
            self._on_error(error)

    def _set_status(self, new_status: ConnectionStatus) -> None:
        if new_status == self._status:
            return
        change = StatusChange(previous=self._status, current=new_status)
        self._status = new_status
        logger.debug("WebSocket status changed: %s -> %s", change.previous.value, new_status.value)
        if self._on_status_change:
            self._on_status_change(change)
