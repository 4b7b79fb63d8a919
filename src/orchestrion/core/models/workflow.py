"""Workflow data models: definitions, executions and validation results."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class WorkflowStatus(str, Enum):
    """Status of a workflow definition."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class ExecutionStatus(str, Enum):
    """Status of one workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class StepStatus(str, Enum):
    """Status of one step within an execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ConditionType(str, Enum):
    """When a step is allowed to run."""

    ALWAYS = "always"
    ON_SUCCESS = "on_success"
    ON_FAILURE = "on_failure"
    EXPRESSION = "expression"


# ============================================================================
# Definitions
# ============================================================================


@dataclass
class StepCondition:
    """Gate evaluated before a step runs."""

    type: ConditionType = ConditionType.ALWAYS
    expression: str | None = None
    depends_on: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "expression": self.expression,
            "depends_on": list(self.depends_on),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepCondition:
        return cls(
            type=ConditionType(data.get("type", ConditionType.ALWAYS.value)),
            expression=data.get("expression"),
            depends_on=list(data.get("depends_on") or []),
        )


@dataclass
class RetryConfig:
    """Step-level retry policy."""

    max_retries: int = 3
    backoff_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_backoff_ms: int = 30000

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "backoff_ms": self.backoff_ms,
            "backoff_multiplier": self.backoff_multiplier,
            "max_backoff_ms": self.max_backoff_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class WorkflowStep:
    """One step of a workflow definition."""

    name: str
    target_id: str
    step_order: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))
    workflow_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    conditions: list[StepCondition] = field(default_factory=lambda: [StepCondition()])
    retry_config: RetryConfig | None = None
    timeout_ms: int = 60000

    @property
    def dependencies(self) -> list[str]:
        """All step ids referenced by this step's conditions, in order."""
        seen: list[str] = []
        for condition in self.conditions:
            for dep in condition.depends_on:
                if dep not in seen:
                    seen.append(dep)
        return seen

    @property
    def continues_on_failure(self) -> bool:
        return any(c.type == ConditionType.ON_FAILURE for c in self.conditions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "target_id": self.target_id,
            "step_order": self.step_order,
            "parameters": self.parameters,
            "conditions": [c.to_dict() for c in self.conditions],
            "retry_config": self.retry_config.to_dict() if self.retry_config else None,
            "timeout_ms": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowStep:
        retry = data.get("retry_config")
        conditions = data.get("conditions")
        return cls(
            id=data.get("id") or str(uuid4()),
            workflow_id=data.get("workflow_id"),
            name=data["name"],
            target_id=data["target_id"],
            step_order=data.get("step_order", 0),
            parameters=dict(data.get("parameters") or {}),
            conditions=(
                [StepCondition.from_dict(c) for c in conditions]
                if conditions is not None
                else [StepCondition()]
            ),
            retry_config=RetryConfig.from_dict(retry) if retry else None,
            timeout_ms=data.get("timeout_ms", 60000),
        )


@dataclass
class Workflow:
    """A named, ordered set of steps."""

    name: str
    steps: list[WorkflowStep] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid4()))
    description: str | None = None
    status: WorkflowStatus = WorkflowStatus.DRAFT
    created_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def ordered_steps(self) -> list[WorkflowStep]:
        """Steps by ascending step_order; declaration order breaks ties."""
        return sorted(self.steps, key=lambda s: s.step_order)

    def snapshot(self) -> Workflow:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.ordered_steps],
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ============================================================================
# Executions
# ============================================================================


@dataclass
class WorkflowContext:
    """Data visible to variable resolution during an execution."""

    variables: dict[str, Any] = field(default_factory=dict)
    step_outputs: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_namespace(self) -> dict[str, Any]:
        """Root mapping used for ``${path}`` lookups."""
        return {
            "variables": self.variables,
            "stepOutputs": self.step_outputs,
            "metadata": self.metadata,
        }


@dataclass
class StepExecution:
    """Runtime record of one step in one execution."""

    step_id: str
    target_id: str
    execution_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    input: dict[str, Any] = field(default_factory=dict)
    output: Any = None
    error: str | None = None
    retry_count: int = 0
    execution_time_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "step_id": self.step_id,
            "target_id": self.target_id,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "retry_count": self.retry_count,
            "execution_time_ms": self.execution_time_ms,
        }


@dataclass
class WorkflowProgress:
    """Progress snapshot of an execution."""

    execution_id: str
    total_steps: int
    completed_steps: int
    failed_steps: int
    current_step: str | None
    progress: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "failed_steps": self.failed_steps,
            "current_step": self.current_step,
            "progress": self.progress,
        }


@dataclass
class WorkflowExecution:
    """One run of a workflow."""

    workflow_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    status: ExecutionStatus = ExecutionStatus.PENDING
    context: WorkflowContext = field(default_factory=WorkflowContext)
    steps: list[StepExecution] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utc_now)
    completed_at: datetime | None = None
    error: str | None = None
    created_by: str | None = None
    dry_run: bool = False

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES

    def step(self, step_id: str) -> StepExecution | None:
        for step_execution in self.steps:
            if step_execution.step_id == step_id:
                return step_execution
        return None

    def progress(self) -> WorkflowProgress:
        """Compute progress from step statuses."""
        total = len(self.steps)
        completed = sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)
        failed = sum(1 for s in self.steps if s.status == StepStatus.FAILED)
        current = next((s.step_id for s in self.steps if s.status == StepStatus.RUNNING), None)
        return WorkflowProgress(
            execution_id=self.id,
            total_steps=total,
            completed_steps=completed,
            failed_steps=failed,
            current_step=current,
            progress=round(100 * completed / total) if total else 0,
        )

    def snapshot(self) -> WorkflowExecution:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "context": self.context.as_namespace(),
            "steps": [s.to_dict() for s in self.steps],
            "started_at": self.started_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "error": self.error,
            "created_by": self.created_by,
            "dry_run": self.dry_run,
        }


# ============================================================================
# Validation
# ============================================================================


class IssueType(str, Enum):
    """Kinds of validation findings."""

    # Errors
    MISSING_AGENT = "missing_agent"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    INVALID_CONDITION = "invalid_condition"
    INVALID_PARAMETERS = "invalid_parameters"

    # Warnings
    UNREACHABLE_STEP = "unreachable_step"
    MISSING_DEPENDENCY = "missing_dependency"
    PERFORMANCE = "performance"


@dataclass
class ValidationIssue:
    """A single error or warning about a workflow definition."""

    type: IssueType
    message: str
    step_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "message": self.message, "step_id": self.step_id}


@dataclass
class ValidationResult:
    """Outcome of validating a workflow definition."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error_types(self) -> set[IssueType]:
        return {issue.type for issue in self.errors}

    def warning_types(self) -> set[IssueType]:
        return {issue.type for issue in self.warnings}

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }
