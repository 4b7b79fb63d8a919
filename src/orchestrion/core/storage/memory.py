"""Dict-backed persistence for tests, the CLI and single-process deployments."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import structlog

from orchestrion.core.models.pagination import Page
from orchestrion.core.models.provider import Target
from orchestrion.core.models.schemas import TaskQuery, WorkflowQuery
from orchestrion.core.models.task import Task
from orchestrion.core.models.workflow import Workflow

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def paginate(
    items: Iterable[T],
    *,
    page: int,
    limit: int,
    sort_key: Callable[[T], Any],
    descending: bool,
) -> Page[T]:
    """Sort and slice ``items`` into a page."""
    ordered = sorted(items, key=sort_key, reverse=descending)
    start = (page - 1) * limit
    return Page(items=ordered[start : start + limit], total=len(ordered), page=page, limit=limit)


def task_matches(task: Task, query: TaskQuery) -> bool:
    """Apply the filter fields of a TaskQuery."""
    if query.status is not None and task.status != query.status:
        return False
    if query.priority is not None and task.priority != query.priority:
        return False
    if query.target_id is not None and task.target_id != query.target_id:
        return False
    if query.workflow_id is not None and task.workflow_id != query.workflow_id:
        return False
    if query.created_by is not None and task.created_by != query.created_by:
        return False
    if query.date_from is not None and task.created_at < query.date_from:
        return False
    if query.date_to is not None and task.created_at > query.date_to:
        return False
    if query.search:
        needle = query.search.lower()
        haystack = f"{task.name} {task.description or ''}".lower()
        if needle not in haystack:
            return False
    return True


def workflow_matches(workflow: Workflow, query: WorkflowQuery) -> bool:
    if query.status is not None and workflow.status != query.status:
        return False
    if query.created_by is not None and workflow.created_by != query.created_by:
        return False
    if query.search:
        needle = query.search.lower()
        haystack = f"{workflow.name} {workflow.description or ''}".lower()
        if needle not in haystack:
            return False
    return True


def _sort_value(entity: Any, field_name: str) -> Any:
    value = getattr(entity, field_name)
    # Enums sort by value; priority is an int enum so this keeps CRITICAL > LOW
    return value.value if hasattr(value, "value") else value


class MemoryStore:
    """In-memory implementation of IPersistence.

    Stored objects are deep-copied on the way in and out so callers can
    never mutate the store's state by accident.
    """

    def __init__(self, targets: Iterable[Target] | None = None) -> None:
        self._targets: dict[str, Target] = {}
        self._tasks: dict[str, Task] = {}
        self._workflows: dict[str, Workflow] = {}
        self._lock = asyncio.Lock()
        for target in targets or []:
            self._targets[target.id] = copy.deepcopy(target)

    async def initialize(self) -> None:
        logger.debug("Memory store ready")

    async def close(self) -> None:
        pass

    # ==================== Target Operations ====================

    async def get_target(self, target_id: str) -> Target | None:
        target = self._targets.get(target_id)
        return copy.deepcopy(target) if target else None

    async def list_targets(self) -> list[Target]:
        return [copy.deepcopy(t) for t in self._targets.values()]

    async def save_target(self, target: Target) -> Target:
        async with self._lock:
            self._targets[target.id] = copy.deepcopy(target)
        return copy.deepcopy(target)

    # ==================== Task Operations ====================

    async def create_task(self, task: Task) -> Task:
        async with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"Task {task.id} already exists")
            self._tasks[task.id] = copy.deepcopy(task)
        return copy.deepcopy(task)

    async def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return copy.deepcopy(task) if task else None

    async def update_task(self, task: Task) -> Task:
        async with self._lock:
            if task.id not in self._tasks:
                raise KeyError(task.id)
            self._tasks[task.id] = copy.deepcopy(task)
        return copy.deepcopy(task)

    async def delete_task(self, task_id: str) -> bool:
        async with self._lock:
            return self._tasks.pop(task_id, None) is not None

    async def list_tasks(self, query: TaskQuery) -> Page[Task]:
        matching = [copy.deepcopy(t) for t in self._tasks.values() if task_matches(t, query)]
        return paginate(
            matching,
            page=query.page,
            limit=query.limit,
            sort_key=lambda t: _sort_value(t, query.sort_by),
            descending=query.sort_order == "desc",
        )

    # ==================== Workflow Operations ====================

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            if workflow.id in self._workflows:
                raise ValueError(f"Workflow {workflow.id} already exists")
            self._workflows[workflow.id] = copy.deepcopy(workflow)
        return copy.deepcopy(workflow)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        workflow = self._workflows.get(workflow_id)
        return copy.deepcopy(workflow) if workflow else None

    async def update_workflow(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            if workflow.id not in self._workflows:
                raise KeyError(workflow.id)
            self._workflows[workflow.id] = copy.deepcopy(workflow)
        return copy.deepcopy(workflow)

    async def delete_workflow(self, workflow_id: str) -> bool:
        async with self._lock:
            return self._workflows.pop(workflow_id, None) is not None

    async def list_workflows(self, query: WorkflowQuery) -> Page[Workflow]:
        matching = [
            copy.deepcopy(w) for w in self._workflows.values() if workflow_matches(w, query)
        ]
        return paginate(
            matching,
            page=query.page,
            limit=query.limit,
            sort_key=lambda w: _sort_value(w, query.sort_by),
            descending=query.sort_order == "desc",
        )
