"""Domain models."""

from orchestrion.core.models.config import Config
from orchestrion.core.models.pagination import Page
from orchestrion.core.models.provider import (
    AuthResult,
    ExecutionResult,
    HealthState,
    HealthStatus,
    Target,
    TargetStatus,
    UnitInfo,
    UnitStatus,
)
from orchestrion.core.models.task import Task, TaskError, TaskPriority, TaskResult, TaskStatus
from orchestrion.core.models.workflow import (
    ConditionType,
    ExecutionStatus,
    IssueType,
    RetryConfig,
    StepCondition,
    StepExecution,
    StepStatus,
    ValidationIssue,
    ValidationResult,
    Workflow,
    WorkflowContext,
    WorkflowExecution,
    WorkflowProgress,
    WorkflowStatus,
    WorkflowStep,
)

__all__ = [
    "AuthResult",
    "ConditionType",
    "Config",
    "ExecutionResult",
    "ExecutionStatus",
    "HealthState",
    "HealthStatus",
    "IssueType",
    "Page",
    "RetryConfig",
    "StepCondition",
    "StepExecution",
    "StepStatus",
    "Target",
    "TargetStatus",
    "Task",
    "TaskError",
    "TaskPriority",
    "TaskResult",
    "TaskStatus",
    "UnitInfo",
    "UnitStatus",
    "ValidationIssue",
    "ValidationResult",
    "Workflow",
    "WorkflowContext",
    "WorkflowExecution",
    "WorkflowProgress",
    "WorkflowStatus",
    "WorkflowStep",
]
