"""Core module - engine, interfaces and models."""

from orchestrion.core.events.bus import AsyncEventBus, Event, EventType
from orchestrion.core.registry.manager import PluginManager

__all__ = [
    "AsyncEventBus",
    "Event",
    "EventType",
    "PluginManager",
]
