"""Storage layer for orchestrion persistence."""

from orchestrion.core.storage.database import DatabaseConfig, DatabaseStore
from orchestrion.core.storage.memory import MemoryStore
from orchestrion.core.storage.models import (
    Base,
    TargetRecord,
    TaskRecord,
    WorkflowRecord,
    WorkflowStepRecord,
)

__all__ = [
    # Stores
    "DatabaseConfig",
    "DatabaseStore",
    "MemoryStore",
    # Tables
    "Base",
    "TargetRecord",
    "TaskRecord",
    "WorkflowRecord",
    "WorkflowStepRecord",
]
