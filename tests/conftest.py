"""Global test fixtures for orchestrion."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio

from orchestrion.core.engine.clock import ManualClock
from orchestrion.core.engine.orchestrator import WorkflowOrchestrator
from orchestrion.core.engine.scheduler import TaskScheduler
from orchestrion.core.events.bus import AsyncEventBus, Event
from orchestrion.core.events.notifier import EngineNotifier
from orchestrion.core.models.config import SchedulerConfig, WorkflowConfig
from orchestrion.core.models.provider import Target, TargetStatus
from orchestrion.core.registry.providers import ProviderRegistry
from orchestrion.core.storage.memory import MemoryStore
from orchestrion.plugins.providers.mock import MockExecutionProvider
from tests.pytest_plugins.markers import (
    pytest_addoption,
    pytest_collection_modifyitems,
    pytest_configure,
)

# Re-export for pytest discovery
__all__ = [
    "pytest_addoption",
    "pytest_collection_modifyitems",
    "pytest_configure",
]


# ============================================================================
# RECORDING DOUBLES
# ============================================================================


@dataclass
class RecordingSink:
    """Notification sink that remembers every call."""

    statuses: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)
    progress: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    errors: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    async def on_status_change(self, entity_id: str, status: str, metadata: dict[str, Any]) -> None:
        self.statuses.append((entity_id, status, metadata))

    async def on_progress(self, entity_id: str, progress: dict[str, Any]) -> None:
        self.progress.append((entity_id, progress))

    async def on_error(self, entity_id: str, message: str, context: dict[str, Any]) -> None:
        self.errors.append((entity_id, message, context))

    def statuses_for(self, entity_id: str) -> list[str]:
        return [status for eid, status, _ in self.statuses if eid == entity_id]


@dataclass
class RecordedSleeps:
    """Stand-in for asyncio.sleep that records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


# ============================================================================
# PYTEST FIXTURES - TIME AND EVENTS
# ============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Create a controllable clock."""
    return ManualClock()


@pytest_asyncio.fixture
async def event_bus():
    """Create a started event bus, stopped after the test."""
    bus = AsyncEventBus()
    await bus.start()
    yield bus
    await bus.stop()


@pytest.fixture
def events(event_bus: AsyncEventBus) -> list[Event]:
    """Collect every event published on the bus."""
    received: list[Event] = []

    async def collect(event: Event) -> None:
        received.append(event)

    event_bus.subscribe(None, collect)
    return received


@pytest.fixture
def notifier(event_bus: AsyncEventBus) -> EngineNotifier:
    return EngineNotifier(event_bus)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def recorded_sleeps() -> RecordedSleeps:
    return RecordedSleeps()


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds or the timeout elapses."""

    async def _wait(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            result = predicate()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait


# ============================================================================
# PYTEST FIXTURES - PROVIDERS AND STORAGE
# ============================================================================


@pytest.fixture
def targets() -> list[Target]:
    """Targets hosted by the ``crm`` provider."""
    return [
        Target(id="crm:sync", name="Sync contacts", provider_id="crm", external_id="sync"),
        Target(id="crm:report", name="Build report", provider_id="crm", external_id="report"),
        Target(
            id="crm:legacy",
            name="Legacy export",
            provider_id="crm",
            external_id="legacy",
            status=TargetStatus.INACTIVE,
        ),
    ]


@pytest.fixture
def store(targets: list[Target]) -> MemoryStore:
    return MemoryStore(targets)


@pytest.fixture
def mock_provider() -> MockExecutionProvider:
    """Create a mock provider exposing the ``crm`` units."""
    return MockExecutionProvider(
        [
            {"external_id": "sync", "name": "Sync contacts"},
            {"external_id": "report", "name": "Build report"},
        ]
    )


@pytest.fixture
def registry(mock_provider: MockExecutionProvider, clock: ManualClock) -> ProviderRegistry:
    """Provider registry with the mock registered as ``crm``."""
    providers = ProviderRegistry(clock=clock)
    providers.register("crm", mock_provider)
    return providers


@pytest.fixture
def scheduler(
    store: MemoryStore,
    registry: ProviderRegistry,
    notifier: EngineNotifier,
    clock: ManualClock,
) -> TaskScheduler:
    """Scheduler driven manually through ``process_queue``."""
    return TaskScheduler(
        store,
        registry,
        notifier,
        SchedulerConfig(base_backoff_ms=1000, max_backoff_ms=30000),
        clock=clock,
    )


@pytest.fixture
def orchestrator(
    store: MemoryStore,
    registry: ProviderRegistry,
    notifier: EngineNotifier,
    clock: ManualClock,
    recorded_sleeps: RecordedSleeps,
) -> WorkflowOrchestrator:
    """Orchestrator whose retry backoff does not actually sleep."""
    return WorkflowOrchestrator(
        store,
        registry,
        notifier,
        WorkflowConfig(),
        clock=clock,
        sleep=recorded_sleeps,
    )
