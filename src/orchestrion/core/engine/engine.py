"""Engine facade - wires and owns every component."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

from orchestrion.core.engine.circuit_breaker import CircuitBreakerConfig
from orchestrion.core.engine.clock import DEFAULT_CLOCK
from orchestrion.core.engine.orchestrator import WorkflowOrchestrator
from orchestrion.core.engine.scheduler import TaskScheduler
from orchestrion.core.events.bus import AsyncEventBus
from orchestrion.core.events.handlers import LoggingHandler, SinkHandler
from orchestrion.core.events.notifier import EngineNotifier
from orchestrion.core.events.types import EventType
from orchestrion.core.models.config import Config
from orchestrion.core.registry.manager import PluginManager
from orchestrion.core.registry.providers import ProviderRegistry
from orchestrion.core.storage.database import DatabaseConfig, DatabaseStore
from orchestrion.core.storage.memory import MemoryStore

if TYPE_CHECKING:
    from orchestrion.core.engine.clock import Clock
    from orchestrion.core.interfaces.provider import IExecutionProvider
    from orchestrion.core.interfaces.sink import INotificationSink
    from orchestrion.core.interfaces.storage import IPersistence
    from orchestrion.core.models.pagination import Page
    from orchestrion.core.models.provider import HealthStatus, Target
    from orchestrion.core.models.schemas import (
        ExecutionOptions,
        TaskCreate,
        TaskQuery,
        TaskUpdate,
        WorkflowCreate,
        WorkflowQuery,
        WorkflowUpdate,
    )
    from orchestrion.core.models.task import Task
    from orchestrion.core.models.workflow import (
        ValidationResult,
        Workflow,
        WorkflowExecution,
        WorkflowProgress,
    )

logger = structlog.get_logger(__name__)


def create_store(config: Config) -> IPersistence:
    """Build the persistence backend named by ``config.storage``."""
    if config.storage.backend == "database":
        return DatabaseStore(DatabaseConfig(url=config.storage.url, echo=config.storage.echo))
    return MemoryStore()


class Engine:
    """
    Coordinates the scheduler, orchestrator and providers.

    Manages the lifecycle of:
    - Event bus and notification sinks
    - Persistence
    - Plugins and the execution providers they contribute
    - Task scheduling and workflow execution

    Example:
        async with Engine(Config()) as engine:
            engine.register_provider("crm", MockExecutionProvider())
            await engine.discover_targets("crm")
            task = await engine.create_task({"name": "sync", "target_id": "crm:sync"})
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        store: IPersistence | None = None,
        sinks: list[INotificationSink] | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Application configuration
            store: Persistence backend; built from ``config.storage`` if omitted
            sinks: Notification sinks to feed with engine events
            clock: Time source shared by every component
        """
        self.config = config or Config()
        self.id = str(uuid4())[:8]
        self.clock = clock or DEFAULT_CLOCK

        self.event_bus = AsyncEventBus(max_queue_size=self.config.events.max_queue_size)
        self.notifier = EngineNotifier(self.event_bus)
        self.store = store or create_store(self.config)
        self.plugin_manager = PluginManager()
        self.providers = ProviderRegistry(
            breaker_config=CircuitBreakerConfig(
                failure_threshold=self.config.circuit_breaker.failure_threshold,
                recovery_timeout=self.config.circuit_breaker.recovery_timeout_s,
            ),
            clock=self.clock,
            notifier=self.notifier,
        )
        self.scheduler = TaskScheduler(
            self.store,
            self.providers,
            self.notifier,
            self.config.scheduler,
            clock=self.clock,
        )
        self.orchestrator = WorkflowOrchestrator(
            self.store,
            self.providers,
            self.notifier,
            self.config.workflow,
            clock=self.clock,
        )

        self._sinks: list[INotificationSink] = list(sinks or [])
        self._unsubscribers: list[Any] = []
        self._running = False
        self._started_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def uptime(self) -> float | None:
        """Uptime in seconds."""
        if self._started_at:
            return (self.clock.now() - self._started_at).total_seconds()
        return None

    async def __aenter__(self) -> Engine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the engine and all components."""
        if self._running:
            logger.warning("Engine already running")
            return

        logger.info("Starting engine", id=self.id)

        try:
            await self.event_bus.start()
            await self.store.initialize()

            if self.config.plugins.enabled:
                self.plugin_manager.load_builtin_plugins(self.config.plugins.disabled)
                if self.config.plugins.directory is not None:
                    self.plugin_manager.load_external_plugins(self.config.plugins.directory)

            self._subscribe_handlers()
            await self._initialize_providers()

            await self.plugin_manager.call_hook_async("on_engine_start", config=self.config)
            await self.scheduler.start()

            self._running = True
            self._started_at = self.clock.now()
            self.notifier.system(EventType.ENGINE_STARTED, engine_id=self.id)
            logger.info("Engine started", id=self.id, providers=self.providers.list_ids())

        except Exception as e:
            logger.exception("Failed to start engine", error=str(e))
            self._running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the engine and release every resource."""
        if not self._running:
            return

        logger.info("Stopping engine", id=self.id)
        self._running = False

        await self.orchestrator.cleanup()
        await self.scheduler.stop()
        await self.plugin_manager.call_hook_async("on_engine_stop")
        await self.providers.disconnect_all()

        self.notifier.system(EventType.ENGINE_STOPPED, engine_id=self.id)
        await self.event_bus.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        await self.store.close()
        logger.info("Engine stopped", id=self.id)

    def _subscribe_handlers(self) -> None:
        self._unsubscribers.append(self.event_bus.subscribe(None, LoggingHandler()))
        for sink in [*self._sinks, *self.plugin_manager.sinks]:
            self._unsubscribers.append(self.event_bus.subscribe(None, SinkHandler(sink)))

    async def _initialize_providers(self) -> None:
        for provider_config in self.config.providers:
            provider = self.plugin_manager.create_provider(
                provider_config.type, **provider_config.options
            )
            self.register_provider(provider_config.id, provider)

        results = await self.providers.connect_all()
        for provider_id, connected in results.items():
            if not connected:
                logger.warning("Provider not connected", provider_id=provider_id)

    # =========================================================================
    # Providers and targets
    # =========================================================================

    def register_provider(self, provider_id: str, provider: IExecutionProvider) -> None:
        self.providers.register(provider_id, provider)

    async def save_target(self, target: Target) -> Target:
        return await self.store.save_target(target)

    async def discover_targets(self, provider_id: str) -> list[Target]:
        """Discover a provider's units and persist them as targets."""
        targets = await self.providers.discover_targets(provider_id)
        for target in targets:
            await self.store.save_target(target)
        logger.info("Targets discovered", provider_id=provider_id, count=len(targets))
        return targets

    async def list_targets(self) -> list[Target]:
        return await self.store.list_targets()

    async def get_health(self) -> dict[str, HealthStatus]:
        return await self.providers.check_all_health()

    # =========================================================================
    # Tasks
    # =========================================================================

    async def create_task(
        self, data: TaskCreate | dict[str, Any], created_by: str | None = None
    ) -> Task:
        return await self.scheduler.create_task(data, created_by)

    async def update_task(self, task_id: str, data: TaskUpdate | dict[str, Any]) -> Task:
        return await self.scheduler.update_task(task_id, data)

    async def get_task(self, task_id: str) -> Task:
        return await self.scheduler.get_task(task_id)

    async def get_tasks(self, query: TaskQuery | dict[str, Any] | None = None) -> Page[Task]:
        return await self.scheduler.get_tasks(query)

    async def cancel_task(self, task_id: str) -> Task:
        return await self.scheduler.cancel_task(task_id)

    async def retry_task(self, task_id: str) -> Task:
        return await self.scheduler.retry_task(task_id)

    async def delete_task(self, task_id: str) -> bool:
        return await self.scheduler.delete_task(task_id)

    def get_queue_status(self) -> dict[str, Any]:
        return self.scheduler.get_queue_status()

    def configure_execution(
        self,
        max_concurrent_tasks: int | None = None,
        queue_processing_interval_ms: int | None = None,
    ) -> dict[str, int]:
        return self.scheduler.configure_execution(max_concurrent_tasks, queue_processing_interval_ms)

    # =========================================================================
    # Workflows
    # =========================================================================

    async def create_workflow(
        self, data: WorkflowCreate | dict[str, Any], created_by: str | None = None
    ) -> Workflow:
        return await self.orchestrator.create_workflow(data, created_by)

    async def update_workflow(
        self, workflow_id: str, data: WorkflowUpdate | dict[str, Any]
    ) -> Workflow:
        return await self.orchestrator.update_workflow(workflow_id, data)

    async def get_workflow(self, workflow_id: str) -> Workflow:
        return await self.orchestrator.get_workflow(workflow_id)

    async def get_workflows(
        self, query: WorkflowQuery | dict[str, Any] | None = None
    ) -> Page[Workflow]:
        return await self.orchestrator.get_workflows(query)

    async def delete_workflow(self, workflow_id: str) -> bool:
        return await self.orchestrator.delete_workflow(workflow_id)

    async def validate_workflow_definition(self, workflow: Workflow | str) -> ValidationResult:
        return await self.orchestrator.validate_workflow_definition(workflow)

    async def execute_workflow(
        self,
        workflow_id: str,
        options: ExecutionOptions | dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> str:
        return await self.orchestrator.execute_workflow(workflow_id, options, created_by)

    def get_workflow_execution(self, execution_id: str) -> WorkflowExecution:
        return self.orchestrator.get_workflow_execution(execution_id)

    async def cancel_workflow_execution(self, execution_id: str) -> WorkflowExecution:
        return await self.orchestrator.cancel_workflow_execution(execution_id)

    def get_workflow_progress(self, execution_id: str) -> WorkflowProgress:
        return self.orchestrator.get_workflow_progress(execution_id)

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "running": self._running,
            "uptime": self.uptime,
            "queue": {
                key: value
                for key, value in self.scheduler.get_queue_status().items()
                if key != "queued_tasks"
            },
            "scheduler": self.scheduler.stats,
            "orchestrator": self.orchestrator.stats,
            "event_bus": self.event_bus.stats,
            "circuit_breakers": self.providers.breakers.get_stats(),
            "plugins": self.plugin_manager.list_plugins(),
        }
