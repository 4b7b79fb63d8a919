"""Core interfaces (protocols) for providers, sinks and storage."""

from orchestrion.core.interfaces.provider import IExecutionProvider
from orchestrion.core.interfaces.sink import INotificationSink
from orchestrion.core.interfaces.storage import IPersistence

__all__ = [
    "IExecutionProvider",
    "INotificationSink",
    "IPersistence",
]
