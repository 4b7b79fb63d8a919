"""Notification sink interface definitions."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class INotificationSink(Protocol):
    """Receives status, progress and error notifications for tasks and executions.

    Implementations push these to a UI, a websocket hub, a log, etc.
    Exceptions raised by a sink are logged and never affect the engine.
    """

    async def on_status_change(
        self,
        entity_id: str,
        status: str,
        metadata: dict[str, Any],
    ) -> None:
        """Called when a task, execution or step changes status."""
        ...

    async def on_progress(self, entity_id: str, progress: dict[str, Any]) -> None:
        """Called when progress is reported."""
        ...

    async def on_error(
        self,
        entity_id: str,
        message: str,
        context: dict[str, Any],
    ) -> None:
        """Called when an entity fails terminally."""
        ...
