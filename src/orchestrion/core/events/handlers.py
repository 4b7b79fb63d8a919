"""Event handler classes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import structlog

from orchestrion.core.events.types import EventType

if TYPE_CHECKING:
    from orchestrion.core.events.bus import Event
    from orchestrion.core.interfaces.sink import INotificationSink

logger = structlog.get_logger(__name__)


class EventHandler(ABC):
    """Base class for event handlers."""

    @property
    @abstractmethod
    def handled_events(self) -> list[EventType]:
        """List of event types this handler processes."""
        ...

    @abstractmethod
    async def handle(self, event: Event) -> None:
        """
        Handle an event.

        Args:
            event: The event to handle
        """
        ...

    async def __call__(self, event: Event) -> None:
        """Make handler callable."""
        if event.type in self.handled_events:
            await self.handle(event)


class LoggingHandler(EventHandler):
    """Handler that logs events."""

    def __init__(self, event_types: list[EventType] | None = None) -> None:
        """
        Initialize logging handler.

        Args:
            event_types: Event types to log (None for all)
        """
        self._event_types = event_types or []

    @property
    def handled_events(self) -> list[EventType]:
        return self._event_types

    async def handle(self, event: Event) -> None:
        logger.info(
            "Event received",
            event_id=event.id,
            event_type=event.type.value,
            source=event.source,
            data=event.data,
        )

    async def __call__(self, event: Event) -> None:
        """Handle all events if no filter, otherwise filter."""
        if not self._event_types or event.type in self._event_types:
            await self.handle(event)


class SinkHandler(EventHandler):
    """Delivers engine notifications to an INotificationSink.

    Status events become ``on_status_change``, progress events
    ``on_progress`` and error events ``on_error``. A failing sink is
    logged and otherwise ignored.
    """

    def __init__(self, sink: INotificationSink) -> None:
        self._sink = sink
        self._event_types = [t for t in EventType if t.channel != "system"]
        self._failures = 0

    @property
    def handled_events(self) -> list[EventType]:
        return self._event_types

    @property
    def failures(self) -> int:
        """Number of sink calls that raised."""
        return self._failures

    async def handle(self, event: Event) -> None:
        entity_id = event.entity_id or ""
        data = event.data
        try:
            if event.type.channel == "progress":
                await self._sink.on_progress(entity_id, data.get("progress", {}))
            elif event.type.channel == "error":
                await self._sink.on_error(entity_id, data.get("message", ""), data.get("context", {}))
            else:
                await self._sink.on_status_change(entity_id, data.get("status", ""), data.get("metadata", {}))
        except Exception as e:
            self._failures += 1
            logger.warning(
                "Notification sink failed",
                event_type=event.type.value,
                entity_id=entity_id,
                error=str(e),
            )
