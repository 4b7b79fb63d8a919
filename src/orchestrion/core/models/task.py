"""Task data models."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class TaskStatus(str, Enum):
    """Task execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class TaskPriority(int, Enum):
    """Task priority levels. Higher value dispatches first."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: str | int | TaskPriority) -> TaskPriority:
        """Accept a member, its name ("high") or its value (3)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown priority: {value}") from None
        return cls(value)


@dataclass
class TaskResult:
    """Outcome of a successful task execution."""

    success: bool
    data: Any = None
    execution_time_ms: float = 0.0
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "execution_time_ms": self.execution_time_ms,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskResult:
        return cls(
            success=data["success"],
            data=data.get("data"),
            execution_time_ms=data.get("execution_time_ms", 0.0),
            timestamp=_parse_datetime(data.get("timestamp")) or utc_now(),
        )


@dataclass
class TaskError:
    """Structured failure record attached to a FAILED task."""

    message: str
    traceback: str | None = None
    timestamp: datetime = field(default_factory=utc_now)
    retry_count: int = 0
    max_retries_exceeded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "traceback": self.traceback,
            "timestamp": self.timestamp.isoformat(),
            "retry_count": self.retry_count,
            "max_retries_exceeded": self.max_retries_exceeded,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskError:
        return cls(
            message=data["message"],
            traceback=data.get("traceback"),
            timestamp=_parse_datetime(data.get("timestamp")) or utc_now(),
            retry_count=data.get("retry_count", 0),
            max_retries_exceeded=data.get("max_retries_exceeded", False),
        )


@dataclass
class Task:
    """A unit of work executed against a single target."""

    name: str
    target_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    description: str | None = None
    workflow_id: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    parameters: dict[str, Any] = field(default_factory=dict)

    # Scheduling
    scheduled_at: datetime = field(default_factory=utc_now)
    retry_count: int = 0
    max_retries: int = 3
    timeout_ms: int = 30000

    # Outcome
    result: TaskResult | None = None
    error: TaskError | None = None

    # Audit
    created_by: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        """Check if task is in a terminal state."""
        return self.status in TERMINAL_TASK_STATUSES

    @property
    def duration(self) -> float | None:
        """Execution duration in seconds."""
        if not self.started_at:
            return None
        end_time = self.completed_at or utc_now()
        return (end_time - self.started_at).total_seconds()

    def snapshot(self) -> Task:
        """Return an independent copy safe to hand to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "target_id": self.target_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "priority": self.priority.name,
            "parameters": self.parameters,
            "scheduled_at": self.scheduled_at.isoformat(),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "timeout_ms": self.timeout_ms,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
        }
