"""Event type definitions."""

from enum import Enum


class EventType(str, Enum):
    """All event types in the system."""

    # Engine lifecycle
    ENGINE_STARTED = "engine.started"
    ENGINE_STOPPED = "engine.stopped"

    # Task lifecycle
    TASK_PENDING = "task.pending"
    TASK_RUNNING = "task.running"
    TASK_PROGRESS = "task.progress"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_CANCELLED = "task.cancelled"
    TASK_RETRYING = "task.retrying"
    TASK_ERROR = "task.error"

    # Workflow execution lifecycle
    WORKFLOW_PENDING = "workflow.pending"
    WORKFLOW_RUNNING = "workflow.running"
    WORKFLOW_PROGRESS = "workflow.progress"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"
    WORKFLOW_CANCELLED = "workflow.cancelled"
    WORKFLOW_ERROR = "workflow.error"

    # Step lifecycle
    STEP_PENDING = "step.pending"
    STEP_RUNNING = "step.running"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    STEP_SKIPPED = "step.skipped"
    STEP_RETRYING = "step.retrying"

    # Resilience
    CIRCUIT_STATE_CHANGED = "circuit.state_changed"

    # Providers
    PROVIDER_REGISTERED = "provider.registered"
    PROVIDER_HEALTH_CHECK = "provider.health_check"

    @property
    def channel(self) -> str:
        """Notification channel: status, progress, error or system."""
        action = self.value.split(".", 1)[1]
        if action == "progress":
            return "progress"
        if action == "error":
            return "error"
        if self.value.split(".", 1)[0] in ("task", "workflow", "step"):
            return "status"
        return "system"
