"""Publishes engine notifications onto the event bus."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from orchestrion.core.events.bus import Event
from orchestrion.core.events.types import EventType

if TYPE_CHECKING:
    from orchestrion.core.events.bus import AsyncEventBus

EntityKind = Literal["task", "workflow", "step"]


class EngineNotifier:
    """Thin, non-blocking publisher used by the scheduler and orchestrator.

    Every method enqueues with ``publish_sync``, so notifying never
    suspends the caller and never raises into engine code.
    """

    def __init__(self, bus: AsyncEventBus | None = None, source: str = "engine") -> None:
        self._bus = bus
        self._source = source

    @property
    def bus(self) -> AsyncEventBus | None:
        return self._bus

    def status(
        self,
        kind: EntityKind,
        entity_id: str,
        status: str | Enum,
        *,
        event_type: EventType | None = None,
        **metadata: Any,
    ) -> None:
        """
        Announce a status change.

        Args:
            kind: Entity kind the id belongs to
            entity_id: Task id, execution id or step id
            status: New status
            event_type: Override the event type derived from kind and status
            **metadata: Extra context passed to sinks
        """
        value = status.value if isinstance(status, Enum) else str(status)
        self._publish(
            event_type or EventType(f"{kind}.{value}"),
            {"entity_id": entity_id, "kind": kind, "status": value, "metadata": metadata},
        )

    def progress(self, kind: EntityKind, entity_id: str, progress: dict[str, Any]) -> None:
        """Announce progress of a task or execution."""
        self._publish(
            EventType(f"{kind}.progress"),
            {"entity_id": entity_id, "kind": kind, "progress": progress},
        )

    def error(self, kind: EntityKind, entity_id: str, message: str, **context: Any) -> None:
        """Announce a terminal failure."""
        self._publish(
            EventType(f"{kind}.error"),
            {"entity_id": entity_id, "kind": kind, "message": message, "context": context},
        )

    def system(self, event_type: EventType, **data: Any) -> None:
        """Announce a non-entity event (circuit changes, engine lifecycle)."""
        self._publish(event_type, data)

    def _publish(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._bus is None:
            return
        self._bus.publish_sync(Event(type=event_type, data=data, source=self._source))
