"""Pydantic schemas for validating caller input."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from orchestrion.core.errors import ValidationError
from orchestrion.core.models.task import TaskPriority, TaskStatus
from orchestrion.core.models.workflow import ConditionType, WorkflowStatus

SortOrder = Literal["asc", "desc"]
TaskSortField = Literal["created_at", "updated_at", "scheduled_at", "name", "priority", "status"]
WorkflowSortField = Literal["created_at", "updated_at", "name", "status"]

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_input(model: type[ModelT], data: ModelT | dict[str, Any] | None) -> ModelT:
    """
    Validate caller input against a schema.

    Args:
        model: Schema class
        data: Already-built schema instance or raw mapping

    Returns:
        Validated schema instance

    Raises:
        ValidationError: If the input does not satisfy the schema
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid")


# --- Task Schemas ---


class TaskCreate(_Input):
    """Payload for creating a task."""

    name: str = Field(..., min_length=1, max_length=200)
    target_id: str = Field(..., min_length=1)
    description: str | None = Field(None, max_length=1000)
    workflow_id: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    parameters: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: datetime | None = None
    max_retries: int = Field(3, ge=0, le=10)
    timeout_ms: int = Field(30000, ge=1000, le=300000)

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> TaskPriority:
        return TaskPriority.parse(v)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class TaskUpdate(_Input):
    """Payload for updating a task. Only provided fields change."""

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)
    priority: TaskPriority | None = None
    parameters: dict[str, Any] | None = None
    scheduled_at: datetime | None = None
    max_retries: int | None = Field(None, ge=0, le=10)
    timeout_ms: int | None = Field(None, ge=1000, le=300000)

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> TaskPriority | None:
        return None if v is None else TaskPriority.parse(v)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class TaskQuery(_Input):
    """Filter, sort and pagination for task listings."""

    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    target_id: str | None = None
    workflow_id: str | None = None
    created_by: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None
    sort_by: TaskSortField = "created_at"
    sort_order: SortOrder = "desc"

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> TaskPriority | None:
        return None if v is None else TaskPriority.parse(v)

    @field_validator("date_from", "date_to")
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


# --- Workflow Schemas ---


class RetryConfigInput(_Input):
    """Step retry policy."""

    max_retries: int = Field(3, ge=0, le=10)
    backoff_ms: int = Field(1000, ge=100)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_backoff_ms: int = Field(30000, ge=1000)


class StepConditionInput(_Input):
    """Step gate."""

    type: ConditionType = ConditionType.ALWAYS
    expression: str | None = None
    depends_on: list[str] = Field(default_factory=list)


class WorkflowStepInput(_Input):
    """One step in a workflow payload.

    ``depends_on`` entries may name another step of the same payload
    by its ``name`` or, for already-stored workflows, by its id.
    """

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=200)
    target_id: str = Field(..., min_length=1)
    step_order: int = Field(..., ge=0)
    parameters: dict[str, Any] = Field(default_factory=dict)
    conditions: list[StepConditionInput] = Field(
        default_factory=lambda: [StepConditionInput(type=ConditionType.ALWAYS)]
    )
    retry_config: RetryConfigInput | None = None
    timeout_ms: int = Field(60000, ge=1000, le=300000)


class WorkflowCreate(_Input):
    """Payload for creating a workflow."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)
    steps: list[WorkflowStepInput] = Field(..., min_length=1)


class WorkflowUpdate(_Input):
    """Payload for updating a workflow. Steps, when given, replace all existing steps."""

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)
    status: WorkflowStatus | None = None
    steps: list[WorkflowStepInput] | None = Field(None, min_length=1)


class WorkflowQuery(_Input):
    """Filter, sort and pagination for workflow listings."""

    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    status: WorkflowStatus | None = None
    created_by: str | None = None
    search: str | None = None
    sort_by: WorkflowSortField = "created_at"
    sort_order: SortOrder = "desc"


class ExecutionOptions(_Input):
    """Options for starting a workflow execution."""

    variables: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False
