# =============================================================================
# Tinyphone Events -- Async Client
# =============================================================================
#
# Primary public API. Runs the reconnection loop, feeds received messages
# through the classifier and dispatcher, exposes events as an async
# iterator and through handler callbacks.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Any, Callable

from ._logging import logger
from .classifier import MessageClassifier
from .config import TinyphoneSettings
from .connection import ConnectionManager
from .constants import DEFAULT_QUEUE_SIZE
from .dispatcher import AsyncEventHandler, EventDispatcher, EventHandler
from .errors import (
    TinyphoneDisposedError,
    TinyphoneError,
    TinyphoneNotConnectedError,
    TinyphoneReceiveError,
    TinyphoneTimeoutError,
)
from .transport import TransportFactory
from .types import (
    ConnectionStats,
    ConnectionStatus,
    EventKind,
    RawMessage,
    StatusChange,
    TinyphoneEvent,
)


class AsyncTinyphoneClient:
    """Async Tinyphone event stream client.

    Args:
        base_url: HTTP(S) address of the Tinyphone API, e.g.
            ``"http://localhost:6060"``. Overrides ``settings.base_url``.
        settings: Connection settings. Defaults to :class:`TinyphoneSettings`.
        queue_size: Max events buffered for the async iterator. When full,
            oldest events are dropped. Default 1000.
        transport_factory: Opens the duplex transport. Defaults to the
            websockets client.

    Example::

        async with AsyncTinyphoneClient("http://localhost:6060") as client:
            async for event in client:
                if event.kind is EventKind.CALL:
                    print(event.payload.id, event.payload.state)
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        settings: TinyphoneSettings | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        settings = settings or TinyphoneSettings()
        if base_url is not None:
            settings = replace(settings, base_url=base_url)
        self._settings = settings

        self._stats = ConnectionStats()
        self._classifier = MessageClassifier()
        self._dispatcher = EventDispatcher(queue_size=queue_size)
        self._connection = ConnectionManager(
            settings,
            on_status_change=self._on_status_change,
            on_error=self._dispatcher.publish_error,
            transport_factory=transport_factory,
        )

        self._stop_event = asyncio.Event()
        self._connected_event = asyncio.Event()
        self._run_task: asyncio.Task[None] | None = None
        self._loop_task: asyncio.Task[Any] | None = None
        self._loop_stopped = asyncio.Event()

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> AsyncTinyphoneClient:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Async iterator -------------------------------------------------------

    def __aiter__(self) -> AsyncTinyphoneClient:
        return self

    async def __anext__(self) -> TinyphoneEvent:
        event = await self._dispatcher.get()
        if event is None:
            raise StopAsyncIteration
        return event

    # -- Properties -----------------------------------------------------------

    @property
    def settings(self) -> TinyphoneSettings:
        return self._settings

    @property
    def url(self) -> str:
        return self._connection.url

    @property
    def status(self) -> ConnectionStatus:
        return self._connection.status

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def is_running(self) -> bool:
        if self._loop_task is not None:
            return True
        return self._run_task is not None and not self._run_task.done()

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    @property
    def queue_size(self) -> int:
        """Number of events waiting in the iterator queue."""
        return self._dispatcher.queue_size

    # -- Control --------------------------------------------------------------

    async def connect(self) -> None:
        """Open the event stream once, without starting the receive loop."""
        await self._connection.connect()

    async def disconnect(self) -> None:
        """Close the current connection. The client stays usable.

        A running reconnection loop is stopped first, so nothing reconnects
        behind the caller's back.
        """
        await self._stop_and_wait()
        await self._connection.disconnect()

    async def send(self, text: str) -> None:
        """Send a text frame on the event stream.

        Raises:
            TinyphoneNotConnectedError: If the stream is not open.
            TinyphoneDisposedError: After :meth:`close`.
        """
        await self._connection.send(text)
        self._stats.messages_sent += 1
        self._stats.bytes_sent += len(text.encode("utf-8"))

    async def run(self) -> None:
        """Keep the event stream connected until :meth:`stop` or :meth:`close`.

        Transport failures never end the loop: after every drop the status
        goes to RECONNECTING and a new connection is attempted after
        ``settings.reconnect_delay`` seconds, without limit. The connection
        is always closed on the way out.

        Raises:
            TinyphoneDisposedError: If the client was already closed.
        """
        if self._connection.disposed:
            raise TinyphoneDisposedError("Client has been closed")

        self._loop_task = asyncio.current_task()
        self._loop_stopped.clear()
        logger.info("Listening for events on %s", self._connection.url)
        try:
            while not self._stop_event.is_set():
                try:
                    if self._connection.status != ConnectionStatus.CONNECTED:
                        await self._connect_unless_stopped()
                    if self._stop_event.is_set():
                        break
                    await self._connection.receive(self._handle_message)
                except TinyphoneDisposedError:
                    break
                except TinyphoneReceiveError as exc:
                    logger.error("Error in WebSocket listener, will attempt reconnect: %s", exc)
                    self._dispatcher.publish_error(exc)
                except TinyphoneError as exc:
                    # Connect failures were already published by the manager
                    logger.debug("Connect attempt failed: %s", exc)

                if self._stop_event.is_set() or self._connection.disposed:
                    break

                await self._connection.prepare_reconnect()
                logger.info("Reconnecting in %.1fs", self._settings.reconnect_delay)
                if await self._wait_for_stop(self._settings.reconnect_delay):
                    break
        finally:
            await self._connection.disconnect()
            self._stop_event.clear()
            self._loop_task = None
            self._loop_stopped.set()
            logger.info("Stopped listening for events")

    def start(self) -> asyncio.Task[None]:
        """Run :meth:`run` as a background task (idempotent)."""
        if self._connection.disposed:
            raise TinyphoneDisposedError("Client has been closed")
        if self._run_task is None or self._run_task.done():
            self._run_task = asyncio.create_task(self.run(), name="tinyphone-events")
        return self._run_task

    def stop(self) -> None:
        """Request the reconnection loop to end.

        Whatever the loop is waiting on (connect, receive or the reconnect
        delay) is interrupted, and :meth:`run` returns after disconnecting.
        No-op when the loop is not running.
        """
        if not self.is_running:
            return
        self._stop_event.set()
        self._connection.cancel_receive()

    async def close(self) -> None:
        """Stop the loop, tear the client down, and end iteration."""
        await self._stop_and_wait()
        self._run_task = None
        await self._connection.dispose()
        self._dispatcher.cancel_pending()
        self._dispatcher.close()

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Block until the stream is CONNECTED.

        Raises:
            TinyphoneTimeoutError: If *timeout* expires first.
        """
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TinyphoneTimeoutError(f"Not connected within {timeout}s") from None

    async def recv(self, timeout: float | None = None) -> TinyphoneEvent:
        """Receive a single event (alternative to async iteration).

        Raises:
            TinyphoneNotConnectedError: If the client has been closed.
            asyncio.TimeoutError: If *timeout* expires.
        """
        event = await self._dispatcher.get(timeout)
        if event is None:
            raise TinyphoneNotConnectedError("Client closed")
        return event

    # -- Handler registration -------------------------------------------------

    def on(
        self, kind: EventKind
    ) -> Callable[[EventHandler | AsyncEventHandler], EventHandler | AsyncEventHandler]:
        """Decorator to register a handler for one event kind.

        Example::

            @client.on(EventKind.ACCOUNT)
            def handle(event: TinyphoneEvent):
                print(event.payload.account, event.payload.status)
        """
        return self._dispatcher.on(kind)

    def on_any(
        self, fn: EventHandler | AsyncEventHandler
    ) -> EventHandler | AsyncEventHandler:
        """Register a wildcard handler that receives all events."""
        return self._dispatcher.on_any(fn)

    def off(self, kind: EventKind, fn: EventHandler | AsyncEventHandler) -> None:
        """Remove a specific handler."""
        self._dispatcher.off(kind, fn)

    # -- Stats ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return client statistics."""
        connected_for = None
        if self._stats.connected_since is not None and self.is_connected:
            connected_for = time.monotonic() - self._stats.connected_since
        return {
            "status": self._connection.status.value,
            "url": self._connection.url,
            "messages_received": self._stats.messages_received,
            "messages_sent": self._stats.messages_sent,
            "bytes_received": self._stats.bytes_received,
            "bytes_sent": self._stats.bytes_sent,
            "reconnect_count": self._stats.reconnect_count,
            "connect_failures": self._stats.connect_failures,
            "connected_for": connected_for,
            "queue_size": self._dispatcher.queue_size,
            "dropped_events": self._dispatcher.dropped,
        }

    # -- Internal -------------------------------------------------------------

    def _handle_message(self, message: RawMessage) -> None:
        self._stats.messages_received += 1
        self._stats.bytes_received += len(message.text.encode("utf-8"))
        self._dispatcher.dispatch(self._classifier.classify(message))

    async def _stop_and_wait(self) -> None:
        """Stop the reconnection loop and wait until it has returned."""
        task = self._run_task
        current = asyncio.current_task()
        looping = self._loop_task is not None and self._loop_task is not current
        self.stop()
        if task is not None and not task.done() and task is not current:
            await asyncio.gather(task, return_exceptions=True)
        elif looping:
            await self._loop_stopped.wait()

    async def _connect_unless_stopped(self) -> None:
        """Connect, giving up as soon as a stop is requested."""
        connect = asyncio.ensure_future(self._connection.connect())
        stopped = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({connect, stopped}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            connect.cancel()
            raise
        finally:
            stopped.cancel()

        if not connect.done():
            logger.debug("Connect attempt abandoned on stop request")
            connect.cancel()
            await asyncio.gather(connect, return_exceptions=True)
            return
        connect.result()

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep *delay* seconds; True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _on_status_change(self, change: StatusChange) -> None:
        if change.current == ConnectionStatus.CONNECTED:
            self._stats.connected_since = time.monotonic()
            self._connected_event.set()
        else:
            self._connected_event.clear()
            if change.current == ConnectionStatus.RECONNECTING:
                self._stats.reconnect_count += 1
            elif change.current == ConnectionStatus.FAILED:
                self._stats.connect_failures += 1
        self._dispatcher.publish_status(change)
