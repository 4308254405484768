# =============================================================================
# Tinyphone Events -- Synchronous Wrapper
# =============================================================================
#
# Thread-based wrapper around AsyncTinyphoneClient for blocking usage.
# =============================================================================

from __future__ import annotations

import asyncio
import queue
import threading
from typing import Any, Callable

from ._logging import logger
from .client import AsyncTinyphoneClient
from .config import TinyphoneSettings, events_url
from .constants import DEFAULT_QUEUE_SIZE
from .errors import (
    TinyphoneDisposedError,
    TinyphoneNotConnectedError,
    TinyphoneTimeoutError,
)
from .types import ConnectionStatus, EventKind, TinyphoneEvent


class SyncTinyphoneClient:
    """Blocking / thread-based Tinyphone event client.

    Runs an :class:`AsyncTinyphoneClient` reconnection loop on a background
    thread. Public methods are thread-safe and block until complete.

    Args:
        base_url: HTTP(S) address of the Tinyphone API.
        settings: Connection settings.
        queue_size: Max events buffered for ``recv()`` (default 1000).

    Example (pull)::

        client = SyncTinyphoneClient("http://localhost:6060")
        client.start()
        event = client.recv(timeout=5.0)
        client.close()

    Example (callbacks)::

        @client.on(EventKind.CALL)
        def handle(event):
            print(event.payload.id, event.payload.state)

        client.run_forever()
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        settings: TinyphoneSettings | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._base_url = base_url
        self._settings = settings
        self._url = events_url(
            base_url if base_url is not None else (settings or TinyphoneSettings()).base_url
        )
        self._queue_size = queue_size

        self._event_queue: queue.Queue[TinyphoneEvent | None] = queue.Queue(
            maxsize=queue_size
        )
        self._handlers: dict[EventKind, list[Callable[[TinyphoneEvent], Any]]] = {}
        self._wildcard_handlers: list[Callable[[TinyphoneEvent], Any]] = []

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._client: AsyncTinyphoneClient | None = None
        self._running = False
        self._closed = False
        self._started_event = threading.Event()
        self._connected_event = threading.Event()

    # -- Lifecycle ------------------------------------------------------------

    def start(self, timeout: float | None = 15.0) -> None:
        """Start the event loop thread.

        Blocks until the stream is connected, unless *timeout* is ``None``.

        Raises:
            TinyphoneTimeoutError: If not connected within *timeout*; the
                background thread is stopped first.
        """
        if self._closed:
            raise TinyphoneDisposedError("Client has been closed")
        if self._running:
            return

        self._running = True
        self._started_event.clear()
        self._connected_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="tinyphone-events"
        )
        self._thread.start()
        self._started_event.wait()

        if timeout is None:
            return
        if not self._connected_event.wait(timeout=timeout):
            self.close()
            raise TinyphoneTimeoutError(f"Not connected within {timeout}s")

    def close(self) -> None:
        """Stop the reconnection loop and the background thread."""
        self._running = False
        self._closed = True
        loop, client = self._loop, self._client
        if loop is not None and client is not None:
            # The loop thread closes the client once run() has returned
            try:
                loop.call_soon_threadsafe(client.stop)
            except RuntimeError:
                logger.debug("Event loop already closed")
        # Signal queue consumers
        self._put(None)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    # -- Send -----------------------------------------------------------------

    def send(self, text: str, timeout: float = 5.0) -> None:
        """Send a text frame (blocks until written).

        Raises:
            TinyphoneDisposedError: After :meth:`close`.
            TinyphoneNotConnectedError: If the client is not running or the
                stream is not open.
        """
        if self._closed:
            raise TinyphoneDisposedError("Client has been closed")
        loop, client = self._loop, self._client
        if loop is None or client is None:
            raise TinyphoneNotConnectedError("Client is not running")
        future = asyncio.run_coroutine_threadsafe(client.send(text), loop)
        future.result(timeout=timeout)

    # -- Receive --------------------------------------------------------------

    def recv(self, timeout: float | None = None) -> TinyphoneEvent:
        """Receive the next event. Blocks until available.

        Raises:
            TinyphoneTimeoutError: If *timeout* expires.
            TinyphoneNotConnectedError: If the client has been closed.
        """
        try:
            event = self._event_queue.get(timeout=timeout)
        except queue.Empty:
            raise TinyphoneTimeoutError("recv() timed out") from None

        if event is None:
            raise TinyphoneNotConnectedError("Client closed")
        return event

    # -- Handler registration -------------------------------------------------

    def on(
        self, kind: EventKind
    ) -> Callable[[Callable[[TinyphoneEvent], Any]], Callable[[TinyphoneEvent], Any]]:
        """Decorator for event handlers (sync callbacks)."""

        def decorator(
            fn: Callable[[TinyphoneEvent], Any],
        ) -> Callable[[TinyphoneEvent], Any]:
            self._handlers.setdefault(EventKind(kind), []).append(fn)
            return fn

        return decorator

    def on_any(
        self, fn: Callable[[TinyphoneEvent], Any]
    ) -> Callable[[TinyphoneEvent], Any]:
        """Register wildcard handler."""
        self._wildcard_handlers.append(fn)
        return fn

    def off(self, kind: EventKind, fn: Callable[[TinyphoneEvent], Any]) -> None:
        """Remove a specific handler (wildcard handlers included)."""
        handlers = self._handlers.get(EventKind(kind), [])
        if fn in handlers:
            handlers.remove(fn)
        if fn in self._wildcard_handlers:
            self._wildcard_handlers.remove(fn)

    # -- Blocking run ---------------------------------------------------------

    def run_forever(self) -> None:
        """Block and dispatch events to registered handlers.

        Returns when ``close()`` is called from another thread or a handler.
        """
        if not self._running:
            self.start(timeout=None)

        while self._running:
            try:
                event = self._event_queue.get(timeout=1.0)
            except queue.Empty:
                continue

            if event is None:
                break

            self._dispatch_to_handlers(event)

    # -- Properties -----------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def status(self) -> ConnectionStatus:
        if self._client:
            return self._client.status
        return ConnectionStatus.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    @property
    def queue_size(self) -> int:
        return self._event_queue.qsize()

    def get_stats(self) -> dict[str, Any]:
        if self._client:
            return self._client.get_stats()
        return {}

    # -- Internal -------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background thread: run the async event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._async_main())
        except Exception as exc:
            logger.error("Background loop error: %s", exc)
        finally:
            self._loop.close()
            self._loop = None
            self._started_event.set()

    async def _async_main(self) -> None:
        """Async entry point in the background thread."""
        self._client = AsyncTinyphoneClient(
            self._base_url,
            settings=self._settings,
            queue_size=self._queue_size,
        )
        self._client.on_any(self._forward)
        self._started_event.set()
        try:
            await self._client.run()
        except Exception as exc:
            logger.error("Client error: %s", exc)
        finally:
            await self._client.close()
            self._put(None)

    def _forward(self, event: TinyphoneEvent) -> None:
        """Runs on the loop thread for every event."""
        if event.kind is EventKind.STATUS:
            if event.payload.current == ConnectionStatus.CONNECTED:
                self._connected_event.set()
            else:
                self._connected_event.clear()
        self._put(event)

    def _put(self, event: TinyphoneEvent | None) -> None:
        try:
            self._event_queue.put_nowait(event)
        except queue.Full:
            # Drop oldest
            try:
                self._event_queue.get_nowait()
                self._event_queue.put_nowait(event)
            except (queue.Empty, queue.Full):
                pass

    def _dispatch_to_handlers(self, event: TinyphoneEvent) -> None:
        """Call sync handlers for the event."""
        handlers = self._handlers.get(event.kind, []) + self._wildcard_handlers
        for handler in handlers:
            try:
                handler(event)
            except Exception as exc:
                logger.error("Handler error for '%s': %s", event.kind.value, exc)
