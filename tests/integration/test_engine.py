"""End-to-end tests for the Engine facade with the mock provider."""

from __future__ import annotations

import pytest
import pytest_asyncio

from orchestrion.core.engine.engine import Engine
from orchestrion.core.errors import ProviderNotFoundError, TargetInactiveError
from orchestrion.core.models.config import Config
from orchestrion.core.models.provider import Target, TargetStatus
from orchestrion.core.models.task import TaskStatus
from orchestrion.core.models.workflow import ExecutionStatus, StepStatus
from orchestrion.core.registry.hookspecs import hookimpl

pytestmark = pytest.mark.integration

UNITS = [
    {"external_id": "sync", "name": "Sync contacts"},
    {"external_id": "report", "name": "Build report"},
]


def _config(**overrides) -> Config:
    data = {
        "scheduler": {"queue_processing_interval_ms": 100},
        "providers": [{"id": "crm", "type": "mock", "options": {"units": UNITS}}],
        **overrides,
    }
    return Config.from_dict(data)


@pytest_asyncio.fixture
async def engine(recording_sink):
    """Started engine with the ``crm`` mock provider and its targets."""
    async with Engine(_config(), sinks=[recording_sink]) as running:
        await running.discover_targets("crm")
        yield running


class _LifecyclePlugin:
    def __init__(self) -> None:
        self.events: list[str] = []

    @hookimpl
    def on_engine_start(self, config):
        self.events.append("start")

    @hookimpl
    async def on_engine_stop(self):
        self.events.append("stop")


# ============================================================================
# LIFECYCLE
# ============================================================================


class TestEngineLifecycle:
    """Tests for starting and stopping the engine."""

    @pytest.mark.asyncio
    async def test_start_wires_components(self, engine):
        assert engine.is_running
        assert engine.scheduler.is_running
        assert engine.providers.list_ids() == ["crm"]
        assert engine.providers.get("crm").is_connected
        assert {t.id for t in await engine.list_targets()} == {"crm:sync", "crm:report"}
        assert engine.uptime is not None

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        engine = Engine(_config())
        await engine.start()
        await engine.stop()
        await engine.stop()

        assert not engine.is_running
        assert not engine.scheduler.is_running
        assert not engine.event_bus.is_running

    @pytest.mark.asyncio
    async def test_unknown_provider_type_aborts_start(self):
        engine = Engine(_config(providers=[{"id": "erp", "type": "sap"}]))

        with pytest.raises(ProviderNotFoundError):
            await engine.start()

        assert not engine.is_running
        assert not engine.event_bus.is_running

    @pytest.mark.asyncio
    async def test_plugin_hooks(self):
        plugin = _LifecyclePlugin()
        engine = Engine(_config())
        engine.plugin_manager.register(plugin, name="lifecycle")

        async with engine:
            assert plugin.events == ["start"]
        assert plugin.events == ["start", "stop"]

    @pytest.mark.asyncio
    async def test_stats(self, engine):
        stats = engine.get_stats()

        assert stats["running"] is True
        assert "queued_tasks" not in stats["queue"]
        assert stats["plugins"] == ["providers"]
        assert set(stats["circuit_breakers"]) == {"crm"}


# ============================================================================
# TASKS
# ============================================================================


class TestEngineTasks:
    """Tests for task execution through the running engine."""

    @pytest.mark.asyncio
    async def test_task_runs_to_completion(self, engine, recording_sink, wait_until):
        task = await engine.create_task(
            {"name": "sync", "target_id": "crm:sync", "parameters": {"full": True}}
        )

        async def completed():
            return (await engine.get_task(task.id)).status == TaskStatus.COMPLETED

        await wait_until(completed)
        await engine.event_bus.flush()

        finished = await engine.get_task(task.id)
        assert finished.result.data["params"] == {"full": True}
        assert recording_sink.statuses_for(task.id) == ["pending", "running", "completed"]
        assert [p["progress"] for eid, p in recording_sink.progress if eid == task.id] == [
            25,
            50,
            75,
            100,
        ]

    @pytest.mark.asyncio
    async def test_inactive_target_rejected(self, engine):
        await engine.save_target(
            Target(
                id="crm:legacy",
                name="Legacy",
                provider_id="crm",
                external_id="legacy",
                status=TargetStatus.MAINTENANCE,
            )
        )
        with pytest.raises(TargetInactiveError):
            await engine.create_task({"name": "old", "target_id": "crm:legacy"})

    @pytest.mark.asyncio
    async def test_configure_execution(self, engine):
        settings = engine.configure_execution(max_concurrent_tasks=500, queue_processing_interval_ms=50)

        assert settings == {"max_concurrent_tasks": 100, "queue_processing_interval_ms": 100}
        assert engine.get_queue_status()["max_concurrent_tasks"] == 100


# ============================================================================
# WORKFLOWS
# ============================================================================


class TestEngineWorkflows:
    """Tests for workflow execution through the running engine."""

    @pytest.mark.asyncio
    async def test_workflow_passes_outputs_between_steps(self, engine, wait_until):
        engine.providers.get("crm").script("sync", {"contacts": 42})
        workflow = await engine.create_workflow(
            {
                "name": "nightly",
                "steps": [
                    {"id": "fetch", "name": "fetch", "target_id": "crm:sync", "step_order": 0},
                    {
                        "name": "report",
                        "target_id": "crm:report",
                        "step_order": 1,
                        "parameters": {
                            "total": "${stepOutputs.fetch.contacts}",
                            "owner": "${variables.owner}",
                        },
                        "conditions": [{"type": "on_success", "depends_on": ["fetch"]}],
                    },
                ],
            }
        )
        await engine.update_workflow(workflow.id, {"status": "active"})

        execution_id = await engine.execute_workflow(workflow.id, {"variables": {"owner": "ops"}})
        await wait_until(lambda: engine.get_workflow_execution(execution_id).is_finished)

        execution = engine.get_workflow_execution(execution_id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert [s.status for s in execution.steps] == [StepStatus.COMPLETED] * 2
        assert execution.steps[1].input == {"total": 42, "owner": "ops"}
        assert engine.get_workflow_progress(execution_id).progress == 100

    @pytest.mark.asyncio
    async def test_stop_cancels_live_executions(self):
        engine = Engine(_config())
        await engine.start()
        await engine.discover_targets("crm")
        engine.providers.get("crm").delay = 5.0
        workflow = await engine.create_workflow(
            {"name": "slow", "steps": [{"name": "fetch", "target_id": "crm:sync", "step_order": 0}]}
        )
        await engine.update_workflow(workflow.id, {"status": "active"})
        execution_id = await engine.execute_workflow(workflow.id)

        await engine.stop()

        assert engine.get_workflow_execution(execution_id).status == ExecutionStatus.CANCELLED


@pytest.mark.database
@pytest.mark.asyncio
async def test_database_backend(request, wait_until):
    """A task persisted in SQLite runs like one in memory."""
    config = _config(
        storage={"backend": "database", "url": request.config.getoption("--database-url")}
    )
    async with Engine(config) as engine:
        await engine.discover_targets("crm")
        task = await engine.create_task({"name": "sync", "target_id": "crm:sync"})

        async def completed():
            return (await engine.get_task(task.id)).status == TaskStatus.COMPLETED

        await wait_until(completed)
        page = await engine.get_tasks({"status": "completed"})
        assert [t.id for t in page.items] == [task.id]
