"""Event system for decoupled communication."""

from orchestrion.core.events.bus import AsyncEventBus, Event, EventType
from orchestrion.core.events.handlers import EventHandler, LoggingHandler, SinkHandler
from orchestrion.core.events.notifier import EngineNotifier

__all__ = [
    "AsyncEventBus",
    "EngineNotifier",
    "Event",
    "EventHandler",
    "EventType",
    "LoggingHandler",
    "SinkHandler",
]
