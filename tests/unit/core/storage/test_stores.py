"""Tests for the memory and database persistence backends."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from orchestrion.core.interfaces.storage import IPersistence
from orchestrion.core.models.provider import Target, TargetStatus
from orchestrion.core.models.schemas import TaskQuery, WorkflowQuery
from orchestrion.core.models.task import Task, TaskError, TaskPriority, TaskResult, TaskStatus
from orchestrion.core.models.workflow import (
    ConditionType,
    RetryConfig,
    StepCondition,
    Workflow,
    WorkflowStatus,
    WorkflowStep,
)
from orchestrion.core.storage.database import DatabaseConfig, DatabaseStore
from orchestrion.core.storage.memory import MemoryStore

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture(params=["memory", pytest.param("database", marks=pytest.mark.database)])
async def any_store(request, targets):
    """Each persistence backend, seeded with the shared targets."""
    if request.param == "memory":
        store = MemoryStore(targets)
    else:
        store = DatabaseStore(DatabaseConfig(url=request.config.getoption("--database-url")))
        await store.initialize()
        for target in targets:
            await store.save_target(target)
    yield store
    await store.close()


def _task(name: str, minutes: int = 0, **kwargs) -> Task:
    stamp = BASE_TIME + timedelta(minutes=minutes)
    return Task(
        name=name,
        target_id=kwargs.pop("target_id", "crm:sync"),
        created_at=stamp,
        updated_at=stamp,
        scheduled_at=stamp,
        **kwargs,
    )


def _workflow(name: str = "pipeline", **kwargs) -> Workflow:
    workflow = Workflow(name=name, created_at=BASE_TIME, updated_at=BASE_TIME, **kwargs)
    workflow.steps = [
        WorkflowStep(
            name="fetch",
            target_id="crm:sync",
            step_order=0,
            workflow_id=workflow.id,
            parameters={"limit": 10},
            retry_config=RetryConfig(max_retries=1, backoff_ms=500),
        ),
        WorkflowStep(
            name="report",
            target_id="crm:report",
            step_order=1,
            workflow_id=workflow.id,
            conditions=[StepCondition(type=ConditionType.ON_SUCCESS, depends_on=["fetch"])],
        ),
    ]
    return workflow


# ============================================================================
# TARGETS
# ============================================================================


class TestTargetStorage:
    """Tests for target persistence."""

    @pytest.mark.asyncio
    async def test_implements_protocol(self, any_store):
        assert isinstance(any_store, IPersistence)

    @pytest.mark.asyncio
    async def test_get_and_list(self, any_store):
        target = await any_store.get_target("crm:legacy")

        assert target.status == TargetStatus.INACTIVE
        assert target.external_id == "legacy"
        assert await any_store.get_target("crm:nope") is None
        assert {t.id for t in await any_store.list_targets()} == {
            "crm:sync",
            "crm:report",
            "crm:legacy",
        }

    @pytest.mark.asyncio
    async def test_save_upserts(self, any_store):
        await any_store.save_target(
            Target(
                id="crm:sync",
                name="Sync v2",
                provider_id="crm",
                external_id="sync",
                capabilities=["batch"],
                metadata={"region": "eu"},
            )
        )

        target = await any_store.get_target("crm:sync")
        assert target.name == "Sync v2"
        assert target.capabilities == ["batch"]
        assert target.metadata == {"region": "eu"}


# ============================================================================
# TASKS
# ============================================================================


class TestTaskStorage:
    """Tests for task persistence."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, any_store):
        task = _task("sync", parameters={"full": True}, priority=TaskPriority.HIGH)
        await any_store.create_task(task)

        loaded = await any_store.get_task(task.id)

        assert loaded.name == "sync"
        assert loaded.parameters == {"full": True}
        assert loaded.priority == TaskPriority.HIGH
        assert loaded.created_at == task.created_at
        assert await any_store.get_task("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, any_store):
        task = _task("sync")
        await any_store.create_task(task)
        with pytest.raises(ValueError):
            await any_store.create_task(task)

    @pytest.mark.asyncio
    async def test_update_persists_outcome(self, any_store):
        task = _task("sync")
        await any_store.create_task(task)

        task.status = TaskStatus.FAILED
        task.retry_count = 2
        task.started_at = BASE_TIME
        task.completed_at = BASE_TIME + timedelta(seconds=3)
        task.error = TaskError(message="boom", retry_count=2, max_retries_exceeded=True)
        await any_store.update_task(task)

        loaded = await any_store.get_task(task.id)
        assert loaded.status == TaskStatus.FAILED
        assert loaded.error.message == "boom"
        assert loaded.error.max_retries_exceeded is True
        assert loaded.duration == 3.0

    @pytest.mark.asyncio
    async def test_update_result(self, any_store):
        task = _task("sync")
        await any_store.create_task(task)
        task.result = TaskResult(success=True, data={"rows": 4}, execution_time_ms=12.0)
        await any_store.update_task(task)

        loaded = await any_store.get_task(task.id)
        assert loaded.result.data == {"rows": 4}

    @pytest.mark.asyncio
    async def test_update_unknown(self, any_store):
        with pytest.raises(KeyError):
            await any_store.update_task(_task("ghost"))

    @pytest.mark.asyncio
    async def test_delete(self, any_store):
        task = _task("sync")
        await any_store.create_task(task)

        assert await any_store.delete_task(task.id) is True
        assert await any_store.delete_task(task.id) is False

    @pytest.mark.asyncio
    async def test_list_filters_sorts_and_pages(self, any_store):
        await any_store.create_task(_task("alpha sync", 0, priority=TaskPriority.LOW))
        await any_store.create_task(_task("beta sync", 1, priority=TaskPriority.CRITICAL))
        await any_store.create_task(_task("gamma", 2, target_id="crm:report"))
        await any_store.create_task(_task("delta sync", 3, status=TaskStatus.COMPLETED))

        newest = await any_store.list_tasks(TaskQuery(limit=2))
        assert [t.name for t in newest.items] == ["delta sync", "gamma"]
        assert newest.total == 4
        assert newest.has_next

        by_priority = await any_store.list_tasks(TaskQuery(sort_by="priority", limit=1))
        assert by_priority.items[0].name == "beta sync"

        searched = await any_store.list_tasks(TaskQuery(search="SYNC", status="pending"))
        assert {t.name for t in searched.items} == {"alpha sync", "beta sync"}

        by_target = await any_store.list_tasks(TaskQuery(target_id="crm:report"))
        assert [t.name for t in by_target.items] == ["gamma"]

        second_page = await any_store.list_tasks(TaskQuery(page=2, limit=3, sort_order="asc"))
        assert [t.name for t in second_page.items] == ["delta sync"]


# ============================================================================
# WORKFLOWS
# ============================================================================


class TestWorkflowStorage:
    """Tests for workflow persistence."""

    @pytest.mark.asyncio
    async def test_steps_round_trip(self, any_store):
        workflow = _workflow()
        await any_store.create_workflow(workflow)

        loaded = await any_store.get_workflow(workflow.id)

        assert [s.name for s in loaded.steps] == ["fetch", "report"]
        assert loaded.steps[0].retry_config == RetryConfig(max_retries=1, backoff_ms=500)
        assert loaded.steps[0].parameters == {"limit": 10}
        assert loaded.steps[1].conditions[0].type == ConditionType.ON_SUCCESS
        assert loaded.steps[1].conditions[0].depends_on == ["fetch"]

    @pytest.mark.asyncio
    async def test_update_replaces_steps(self, any_store):
        workflow = _workflow()
        await any_store.create_workflow(workflow)

        workflow.status = WorkflowStatus.ACTIVE
        workflow.steps = workflow.steps[:1]
        await any_store.update_workflow(workflow)

        loaded = await any_store.get_workflow(workflow.id)
        assert loaded.status == WorkflowStatus.ACTIVE
        assert [s.name for s in loaded.steps] == ["fetch"]

    @pytest.mark.asyncio
    async def test_delete(self, any_store):
        workflow = _workflow()
        await any_store.create_workflow(workflow)

        assert await any_store.delete_workflow(workflow.id) is True
        assert await any_store.get_workflow(workflow.id) is None
        assert await any_store.delete_workflow(workflow.id) is False

    @pytest.mark.asyncio
    async def test_list_filters(self, any_store):
        await any_store.create_workflow(_workflow("nightly export", status=WorkflowStatus.ACTIVE))
        await any_store.create_workflow(_workflow("adhoc", created_by="alice"))

        active = await any_store.list_workflows(WorkflowQuery(status="active"))
        assert [w.name for w in active.items] == ["nightly export"]

        mine = await any_store.list_workflows(WorkflowQuery(created_by="alice"))
        assert [w.name for w in mine.items] == ["adhoc"]

        searched = await any_store.list_workflows(WorkflowQuery(search="EXPORT"))
        assert searched.total == 1


class TestMemoryStoreIsolation:
    """The memory store hands out copies, never its own objects."""

    @pytest.mark.asyncio
    async def test_mutating_returned_task_does_not_leak(self, store):
        task = _task("sync")
        await store.create_task(task)

        task.status = TaskStatus.RUNNING
        loaded = await store.get_task(task.id)
        loaded.parameters["x"] = 1

        fresh = await store.get_task(task.id)
        assert fresh.status == TaskStatus.PENDING
        assert fresh.parameters == {}
