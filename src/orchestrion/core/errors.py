"""Exception hierarchy for the orchestration engine."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from orchestrion.core.models.workflow import ValidationResult


class OrchestrionError(Exception):
    """Base class for all engine errors."""


# =========================================================================
# Input / lookup errors
# =========================================================================


class ValidationError(OrchestrionError):
    """Input payload failed validation."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: Any) -> ValidationError:
        """Wrap a pydantic ValidationError."""
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        summary = ", ".join(f"{e['field']}: {e['message']}" for e in errors)
        return cls(f"Invalid input: {summary}", errors)


class NotFoundError(OrchestrionError):
    """A referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"{self.entity} {entity_id} not found")
        self.entity_id = entity_id


class TaskNotFoundError(NotFoundError):
    entity = "Task"


class WorkflowNotFoundError(NotFoundError):
    entity = "Workflow"


class ExecutionNotFoundError(NotFoundError):
    entity = "Workflow execution"


class TargetNotFoundError(NotFoundError):
    entity = "Target"


class ProviderNotFoundError(NotFoundError):
    entity = "Provider"


# =========================================================================
# Precondition errors
# =========================================================================


class PreconditionError(OrchestrionError):
    """Operation not allowed in the current state."""


class TargetInactiveError(PreconditionError):
    """Target exists but is not ACTIVE."""

    def __init__(self, target_id: str, status: str) -> None:
        super().__init__(f"Target {target_id} is not active (status: {status})")
        self.target_id = target_id
        self.status = status


class InvalidStateError(PreconditionError):
    """Entity is in a state that forbids the operation."""


class WorkflowInvalidError(PreconditionError):
    """Workflow definition did not pass validation."""

    def __init__(self, result: ValidationResult) -> None:
        messages = ", ".join(issue.message for issue in result.errors)
        super().__init__(f"Workflow validation failed: {messages}")
        self.result = result


# =========================================================================
# Execution errors
# =========================================================================


class ExecutionError(OrchestrionError):
    """A provider call failed or reported failure."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class TaskCancelledError(OrchestrionError):
    """Task or execution was cancelled by an operator."""


class TaskTimeoutError(OrchestrionError):
    """Execution exceeded its timeout."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Execution timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class CircuitOpenError(OrchestrionError):
    """Raised when a circuit is open and the request is rejected."""

    def __init__(self, name: str, next_attempt: datetime | None = None) -> None:
        message = f"Circuit '{name}' is open, request rejected"
        if next_attempt is not None:
            message += f" until {next_attempt.isoformat()}"
        super().__init__(message)
        self.name = name
        self.next_attempt = next_attempt


# =========================================================================
# Provider errors
# =========================================================================


class ProviderError(OrchestrionError):
    """Error raised by an execution provider."""


class ProviderAbortedError(ProviderError):
    """Provider request was aborted before completion."""


__all__ = [
    "CircuitOpenError",
    "ExecutionError",
    "ExecutionNotFoundError",
    "InvalidStateError",
    "NotFoundError",
    "OrchestrionError",
    "PreconditionError",
    "ProviderAbortedError",
    "ProviderError",
    "ProviderNotFoundError",
    "TargetInactiveError",
    "TargetNotFoundError",
    "TaskCancelledError",
    "TaskNotFoundError",
    "TaskTimeoutError",
    "ValidationError",
    "WorkflowInvalidError",
    "WorkflowNotFoundError",
]
