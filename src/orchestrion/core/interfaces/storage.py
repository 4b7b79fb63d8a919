"""Persistence interface definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from orchestrion.core.models.pagination import Page
    from orchestrion.core.models.provider import Target
    from orchestrion.core.models.schemas import TaskQuery, WorkflowQuery
    from orchestrion.core.models.task import Task
    from orchestrion.core.models.workflow import Workflow


@runtime_checkable
class IPersistence(Protocol):
    """Contract for durable storage of targets, tasks and workflows.

    All methods are awaited; storage errors propagate to the caller.
    Returned objects are copies owned by the caller.
    """

    async def initialize(self) -> None:
        """Prepare the store (create tables, open connections)."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...

    # Targets

    async def get_target(self, target_id: str) -> Target | None:
        ...

    async def list_targets(self) -> list[Target]:
        ...

    async def save_target(self, target: Target) -> Target:
        """Insert or replace a target."""
        ...

    # Tasks

    async def create_task(self, task: Task) -> Task:
        ...

    async def get_task(self, task_id: str) -> Task | None:
        ...

    async def update_task(self, task: Task) -> Task:
        """Replace the stored record with ``task``."""
        ...

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task. Returns False if it did not exist."""
        ...

    async def list_tasks(self, query: TaskQuery) -> Page[Task]:
        ...

    # Workflows

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        ...

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        ...

    async def update_workflow(self, workflow: Workflow) -> Workflow:
        """Replace the stored workflow, including all of its steps."""
        ...

    async def delete_workflow(self, workflow_id: str) -> bool:
        ...

    async def list_workflows(self, query: WorkflowQuery) -> Page[Workflow]:
        ...
