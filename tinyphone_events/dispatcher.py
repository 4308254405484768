# =============================================================================
# Tinyphone Events -- Event Dispatcher
# =============================================================================
#
# Fans classified messages out as tagged TinyphoneEvent values: first to
# handlers registered for the kind, then wildcard handlers, then the
# bounded queue behind the client's async iterator.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

from ._logging import logger
from .constants import DEFAULT_QUEUE_SIZE
from .types import (
    Classification,
    EventKind,
    MessageKind,
    StatusChange,
    TinyphoneEvent,
)

# Type alias for event handlers
EventHandler = Callable[[TinyphoneEvent], Any]
AsyncEventHandler = Callable[[TinyphoneEvent], Awaitable[Any]]

_TYPED_KINDS = {
    MessageKind.WELCOME: EventKind.WELCOME,
    MessageKind.ACCOUNT: EventKind.ACCOUNT,
    MessageKind.CALL: EventKind.CALL,
}


class EventDispatcher:
    """Publish events to handlers and to a single event queue.

    Args:
        queue_size: Max events buffered for the iterator. When full, the
            oldest event is dropped.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue: asyncio.Queue[TinyphoneEvent | None] = asyncio.Queue(
            maxsize=queue_size
        )
        self._handlers: dict[EventKind, list[EventHandler | AsyncEventHandler]] = (
            defaultdict(list)
        )
        self._wildcard_handlers: list[EventHandler | AsyncEventHandler] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._dropped = 0

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        """Events discarded because the queue was full."""
        return self._dropped

    # -- Handler registration -------------------------------------------------

    def on(
        self, kind: EventKind
    ) -> Callable[[EventHandler | AsyncEventHandler], EventHandler | AsyncEventHandler]:
        """Decorator registering *fn* for events of *kind*."""

        def decorator(
            fn: EventHandler | AsyncEventHandler,
        ) -> EventHandler | AsyncEventHandler:
            self._handlers[EventKind(kind)].append(fn)
            return fn

        return decorator

    def on_any(
        self, fn: EventHandler | AsyncEventHandler
    ) -> EventHandler | AsyncEventHandler:
        """Register a wildcard handler that receives all events."""
        self._wildcard_handlers.append(fn)
        return fn

    def off(self, kind: EventKind, fn: EventHandler | AsyncEventHandler) -> None:
        """Remove a specific handler (wildcard handlers included)."""
        handlers = self._handlers.get(EventKind(kind), [])
        if fn in handlers:
            handlers.remove(fn)
        if fn in self._wildcard_handlers:
            self._wildcard_handlers.remove(fn)

    # -- Publishing -----------------------------------------------------------

    def dispatch(self, classification: Classification) -> None:
        """Publish RAW for every message, then at most one typed event."""
        raw = classification.raw
        self.publish(TinyphoneEvent(EventKind.RAW, raw.text, raw.sequence))

        kind = _TYPED_KINDS.get(classification.kind)
        if kind is None:
            logger.debug("Message #%d is unclassified, delivered as raw text", raw.sequence)
            return

        value = classification.value
        if kind is EventKind.WELCOME:
            logger.info("Received welcome message: %s", value.message)
        elif kind is EventKind.ACCOUNT:
            logger.info("Received account event: %s - %s", value.account, value.status)
        else:
            logger.info("Received call event: Call %s - %s", value.id, value.state)
        self.publish(TinyphoneEvent(kind, value, raw.sequence))

    def publish_status(self, change: StatusChange) -> None:
        self.publish(TinyphoneEvent(EventKind.STATUS, change))

    def publish_error(self, error: Exception) -> None:
        self.publish(TinyphoneEvent(EventKind.ERROR, error))

    def publish(self, event: TinyphoneEvent) -> None:
        self._invoke_handlers(event)
        self._enqueue(event)

    def close(self) -> None:
        """Signal iterators that no more events will come."""
        self._enqueue(None)

    async def get(self, timeout: float | None = None) -> TinyphoneEvent | None:
        """Next queued event, or ``None`` once closed.

        Raises:
            asyncio.TimeoutError: If *timeout* expires.
        """
        if timeout is not None:
            event = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        else:
            event = await self._queue.get()
        if event is None:
            # Re-queue sentinel so other callers also see the close signal
            try:
                self._queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        return event

    def cancel_pending(self) -> None:
        """Cancel handler coroutines that are still running."""
        for task in self._background_tasks:
            task.cancel()
        self._background_tasks.clear()

    # -- Internal -------------------------------------------------------------

    def _enqueue(self, event: TinyphoneEvent | None) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # Drop oldest to make room
            try:
                self._queue.get_nowait()
                self._dropped += 1
                self._queue.put_nowait(event)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(self._log_task_error)

    def _invoke_handlers(self, event: TinyphoneEvent) -> None:
        handlers = self._handlers.get(event.kind, []) + self._wildcard_handlers
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception as exc:
                logger.error("Handler error for '%s': %s", event.kind.value, exc)

    @staticmethod
    def _log_task_error(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async handler error: %s", exc)
