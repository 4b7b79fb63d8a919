"""Async event bus decoupling the engine from its observers."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import structlog

from orchestrion.core.events.types import EventType

logger = structlog.get_logger(__name__)

# Type alias for event handlers
EventHandler = Callable[["Event"], Coroutine[Any, Any, None]]


@dataclass
class Event:
    """Represents an event in the system."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: str(uuid4()))

    correlation_id: str | None = None

    def __post_init__(self) -> None:
        if not self.source:
            self.source = "unknown"

    @property
    def entity_id(self) -> str | None:
        """Id of the task, execution or step the event is about."""
        return self.data.get("entity_id")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "data": self.data,
            "source": self.source,
            "timestamp": self.timestamp,
            "correlation_id": self.correlation_id,
        }


class AsyncEventBus:
    """Queue-backed pub/sub bus.

    Publishing only enqueues; a background task dispatches events to
    subscribers so that a slow or failing subscriber never blocks the
    publisher.
    """

    def __init__(self, max_queue_size: int = 10000) -> None:
        """
        Initialize the event bus.

        Args:
            max_queue_size: Maximum number of events to queue
        """
        self._handlers: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._wildcard_handlers: list[EventHandler] = []
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._processing_task: asyncio.Task[None] | None = None
        self._running = False
        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "events_dropped": 0,
            "handlers_invoked": 0,
            "handler_errors": 0,
        }

    async def start(self) -> None:
        """Start the event processing loop."""
        if self._running:
            return

        self._running = True
        self._processing_task = asyncio.create_task(self._process_events())
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the loop after dispatching whatever is still queued."""
        if not self._running:
            return

        self._running = False

        if self._processing_task:
            self._processing_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._processing_task
            self._processing_task = None

        await self._drain()
        logger.info("Event bus stopped", stats=self._stats)

    async def flush(self) -> None:
        """Wait until every event published so far has been dispatched."""
        if self._running:
            await self._queue.join()
        else:
            await self._drain()

    def subscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """
        Subscribe to events.

        Args:
            event_type: Event type to subscribe to, or None for all events
            handler: Async handler function

        Returns:
            Unsubscribe function
        """
        if event_type is None:
            self._wildcard_handlers.append(handler)
            return lambda: self.unsubscribe(None, handler)
        self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
    ) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        handlers = self._wildcard_handlers if event_type is None else self._handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event: Event) -> None:
        """Publish an event, waiting for queue space if necessary."""
        self._stats["events_published"] += 1
        await self._queue.put(event)

    def publish_sync(self, event: Event) -> bool:
        """
        Publish an event without waiting.

        Args:
            event: Event to publish

        Returns:
            False if the queue was full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._stats["events_dropped"] += 1
            logger.warning("Event queue full, dropping event", event_type=event.type.value)
            return False
        self._stats["events_published"] += 1
        return True

    async def emit(
        self,
        event_type: EventType,
        data: dict[str, Any] | None = None,
        source: str = "",
    ) -> Event:
        """Create and publish an event."""
        event = Event(type=event_type, data=data or {}, source=source)
        await self.publish(event)
        return event

    async def _process_events(self) -> None:
        """Background task to process events from queue."""
        while self._running:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
                self._stats["events_processed"] += 1
            except Exception as e:
                logger.exception("Error in event processing loop", error=str(e))
            finally:
                self._queue.task_done()

    async def _drain(self) -> None:
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                await self._dispatch(event)
                self._stats["events_processed"] += 1
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        """Dispatch event to all registered handlers concurrently."""
        handlers = list(self._handlers.get(event.type, []))
        handlers.extend(self._wildcard_handlers)

        if not handlers:
            return

        await asyncio.gather(
            *(self._invoke_handler(handler, event) for handler in handlers),
            return_exceptions=True,
        )

    async def _invoke_handler(self, handler: EventHandler, event: Event) -> None:
        """Invoke a single handler, logging and swallowing its errors."""
        try:
            self._stats["handlers_invoked"] += 1
            await handler(event)
        except Exception as e:
            self._stats["handler_errors"] += 1
            logger.exception(
                "Handler error",
                handler=getattr(handler, "__name__", type(handler).__name__),
                event_type=event.type.value,
                error=str(e),
            )

    @property
    def stats(self) -> dict[str, int]:
        """Get event bus statistics."""
        return self._stats.copy()

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._running


__all__ = ["AsyncEventBus", "Event", "EventHandler", "EventType"]
