"""Task scheduler: priority queue, bounded concurrent dispatch and retries."""

from __future__ import annotations

import asyncio
import contextlib
import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from orchestrion.core.engine.clock import DEFAULT_CLOCK
from orchestrion.core.engine.queue import QueuedTask, TaskQueue
from orchestrion.core.engine.retry import task_retry_delay_ms
from orchestrion.core.engine.ticker import MAX_INTERVAL_MS, MIN_INTERVAL_MS, Ticker, clamp
from orchestrion.core.errors import (
    ExecutionError,
    InvalidStateError,
    TargetInactiveError,
    TargetNotFoundError,
    TaskCancelledError,
    TaskNotFoundError,
    TaskTimeoutError,
)
from orchestrion.core.events.notifier import EngineNotifier
from orchestrion.core.events.types import EventType
from orchestrion.core.models.config import SchedulerConfig
from orchestrion.core.models.schemas import TaskCreate, TaskQuery, TaskUpdate, parse_input
from orchestrion.core.models.task import Task, TaskError, TaskResult, TaskStatus

if TYPE_CHECKING:
    from orchestrion.core.engine.clock import Clock
    from orchestrion.core.interfaces.storage import IPersistence
    from orchestrion.core.models.pagination import Page
    from orchestrion.core.registry.providers import ProviderRegistry

logger = structlog.get_logger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 100

# Fields an update may reset to None
NULLABLE_TASK_FIELDS = frozenset({"description"})


@dataclass
class TaskExecution:
    """A task currently being executed."""

    task_id: str
    handle: asyncio.Task[None]
    started_at: datetime
    attempt: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "started_at": self.started_at.isoformat(),
            "attempt": self.attempt,
        }


class TaskScheduler:
    """
    Runs tasks against their targets' providers.

    Pending tasks wait in a TaskQueue. A Ticker drains the queue at a fixed
    interval, dispatching eligible tasks while fewer than
    ``max_concurrent_tasks`` are running. Each dispatched task runs in its
    own asyncio task; failures are retried with exponential backoff until
    ``max_retries`` is exhausted.

    Example:
        scheduler = TaskScheduler(store, providers, notifier)
        await scheduler.start()
        task = await scheduler.create_task({"name": "sync", "target_id": "crm:sync"})
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: IPersistence,
        providers: ProviderRegistry,
        notifier: EngineNotifier | None = None,
        config: SchedulerConfig | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._store = store
        self._providers = providers
        self._notifier = notifier or EngineNotifier()
        self._clock = clock or DEFAULT_CLOCK

        self._queue = TaskQueue()
        self._running: dict[str, TaskExecution] = {}
        self._max_concurrent = clamp(
            self.config.max_concurrent_tasks, MIN_CONCURRENCY, MAX_CONCURRENCY
        )
        self._ticker = Ticker(
            self.process_queue,
            self.config.queue_processing_interval_ms,
            name="task-scheduler",
        )

        self._stats = {
            "tasks_created": 0,
            "tasks_dispatched": 0,
            "tasks_completed": 0,
            "tasks_failed": 0,
            "tasks_retried": 0,
            "tasks_cancelled": 0,
            "tasks_timed_out": 0,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._ticker.is_running

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def queue(self) -> TaskQueue:
        return self._queue

    @property
    def stats(self) -> dict[str, int]:
        return self._stats.copy()

    async def start(self) -> None:
        """Start periodic queue processing."""
        await self._ticker.start()
        logger.info(
            "Task scheduler started",
            max_concurrent_tasks=self._max_concurrent,
            interval_ms=self._ticker.interval_ms,
        )

    async def stop(self) -> None:
        """Stop processing, cancel running executions and clear the queue."""
        await self._ticker.stop()

        running = list(self._running.values())
        self._running.clear()
        for execution in running:
            execution.handle.cancel()
        for execution in running:
            with contextlib.suppress(asyncio.CancelledError):
                await execution.handle
            await self._mark_cancelled(execution.task_id, reason="Scheduler stopped")

        self._queue.clear()
        logger.info("Task scheduler stopped", cancelled=len(running))

    async def cleanup(self) -> None:
        await self.stop()

    def configure_execution(
        self,
        max_concurrent_tasks: int | None = None,
        queue_processing_interval_ms: int | None = None,
    ) -> dict[str, int]:
        """
        Adjust concurrency and processing interval at runtime.

        Values are clamped to [1, 100] and [100, 10000] respectively. A
        changed interval restarts the ticker.

        Returns:
            The values actually applied
        """
        if max_concurrent_tasks is not None:
            self._max_concurrent = clamp(max_concurrent_tasks, MIN_CONCURRENCY, MAX_CONCURRENCY)
        if queue_processing_interval_ms is not None:
            interval = clamp(queue_processing_interval_ms, MIN_INTERVAL_MS, MAX_INTERVAL_MS)
            if interval != self._ticker.interval_ms:
                self._ticker.set_interval(interval)

        applied = {
            "max_concurrent_tasks": self._max_concurrent,
            "queue_processing_interval_ms": self._ticker.interval_ms,
        }
        logger.info("Execution configured", **applied)
        return applied

    def get_queue_status(self) -> dict[str, Any]:
        return {
            "queue_size": len(self._queue),
            "running_tasks": len(self._running),
            "max_concurrent_tasks": self._max_concurrent,
            "is_processing": self._ticker.is_running,
            "queued_tasks": [entry.to_dict() for entry in self._queue.snapshot()],
        }

    # =========================================================================
    # Task CRUD
    # =========================================================================

    async def create_task(
        self,
        data: TaskCreate | dict[str, Any],
        created_by: str | None = None,
    ) -> Task:
        """
        Validate, persist and enqueue a new task.

        Raises:
            ValidationError: Invalid payload
            TargetNotFoundError: Unknown target
            TargetInactiveError: Target is not ACTIVE
        """
        payload = parse_input(TaskCreate, data)

        target = await self._store.get_target(payload.target_id)
        if target is None:
            raise TargetNotFoundError(payload.target_id)
        if not target.is_active:
            raise TargetInactiveError(target.id, target.status.value)

        now = self._clock.now()
        task = Task(
            name=payload.name,
            target_id=payload.target_id,
            description=payload.description,
            workflow_id=payload.workflow_id,
            priority=payload.priority,
            parameters=dict(payload.parameters),
            scheduled_at=payload.scheduled_at or now,
            max_retries=(
                payload.max_retries
                if "max_retries" in payload.model_fields_set
                else self.config.default_max_retries
            ),
            timeout_ms=(
                payload.timeout_ms
                if "timeout_ms" in payload.model_fields_set
                else self.config.default_timeout_ms
            ),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        task = await self._store.create_task(task)
        self._queue.push(QueuedTask.from_task(task))
        self._stats["tasks_created"] += 1

        logger.info(
            "Task created",
            task_id=task.id,
            target_id=task.target_id,
            priority=task.priority.name,
        )
        self._notifier.status("task", task.id, TaskStatus.PENDING, name=task.name)
        return task

    async def get_task(self, task_id: str) -> Task:
        task = await self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def get_tasks(self, query: TaskQuery | dict[str, Any] | None = None) -> Page[Task]:
        return await self._store.list_tasks(parse_input(TaskQuery, query))

    async def update_task(self, task_id: str, data: TaskUpdate | dict[str, Any]) -> Task:
        """
        Update mutable fields of a task that is not running.

        A queued task's queue entry picks up new priority, schedule,
        retry limit and timeout immediately.

        Raises:
            TaskNotFoundError: Unknown task
            InvalidStateError: Task is RUNNING
        """
        payload = parse_input(TaskUpdate, data)
        task = await self.get_task(task_id)
        if task.status == TaskStatus.RUNNING:
            raise InvalidStateError(f"Cannot update running task {task_id}")

        changes = payload.model_dump(exclude_unset=True)
        for field_name, value in changes.items():
            if value is None and field_name not in NULLABLE_TASK_FIELDS:
                continue
            setattr(task, field_name, value)
        task.updated_at = self._clock.now()
        task = await self._store.update_task(task)

        self._queue.update(
            task_id,
            priority=payload.priority,
            scheduled_at=payload.scheduled_at,
            max_retries=payload.max_retries,
            timeout_ms=payload.timeout_ms,
        )
        logger.debug("Task updated", task_id=task_id, fields=sorted(changes))
        return task

    async def delete_task(self, task_id: str) -> bool:
        """Cancel the task if it is still active, then delete it."""
        await self.cancel_task(task_id)
        deleted = await self._store.delete_task(task_id)
        logger.info("Task deleted", task_id=task_id)
        return deleted

    async def cancel_task(self, task_id: str) -> Task:
        """
        Cancel a queued or running task.

        Cancelling a task that already finished returns it unchanged.

        Raises:
            TaskNotFoundError: Unknown task
        """
        task = await self.get_task(task_id)
        if task.is_finished:
            return task

        self._queue.remove(task_id)
        execution = self._running.pop(task_id, None)
        if execution is not None:
            execution.handle.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await execution.handle

        return await self._mark_cancelled(task_id, reason="Cancelled by request")

    async def retry_task(self, task_id: str) -> Task:
        """
        Re-queue a FAILED task immediately.

        The stored retry_count is kept, so automatic retries continue
        from where they stopped.

        Raises:
            TaskNotFoundError: Unknown task
            InvalidStateError: Task is not FAILED
        """
        task = await self.get_task(task_id)
        if task.status != TaskStatus.FAILED:
            raise InvalidStateError(
                f"Only failed tasks can be retried (task {task_id} is {task.status.value})"
            )

        now = self._clock.now()
        task.status = TaskStatus.PENDING
        task.result = None
        task.error = None
        task.started_at = None
        task.completed_at = None
        task.scheduled_at = now
        task.updated_at = now
        task = await self._store.update_task(task)

        self._queue.push(QueuedTask.from_task(task, scheduled_at=now))
        logger.info("Task re-queued", task_id=task_id, retry_count=task.retry_count)
        self._notifier.status("task", task_id, TaskStatus.PENDING, manual_retry=True)
        return task

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def process_queue(self) -> int:
        """
        Dispatch eligible tasks until the concurrency cap is reached.

        Returns:
            Number of tasks dispatched
        """
        dispatched = 0
        now = self._clock.now()
        while len(self._running) < self._max_concurrent:
            entry = self._queue.pop_next(now)
            if entry is None:
                break
            self._dispatch(entry)
            dispatched += 1
        return dispatched

    def _dispatch(self, entry: QueuedTask) -> None:
        # Registered before the first await so the cap holds
        handle = asyncio.create_task(self._run_task(entry), name=f"task-{entry.task_id}")
        self._running[entry.task_id] = TaskExecution(
            task_id=entry.task_id,
            handle=handle,
            started_at=self._clock.now(),
            attempt=entry.retry_count,
        )
        self._stats["tasks_dispatched"] += 1

    async def _run_task(self, entry: QueuedTask) -> None:
        try:
            task = await self._store.get_task(entry.task_id)
            if task is None or task.status != TaskStatus.PENDING:
                logger.debug("Skipping dispatch of inactive task", task_id=entry.task_id)
                return

            try:
                await self._execute(task)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._handle_failure(task, e)
        finally:
            current = self._running.get(entry.task_id)
            if current is not None and current.handle is asyncio.current_task():
                del self._running[entry.task_id]

    async def _execute(self, task: Task) -> None:
        started = self._clock.now()
        task.status = TaskStatus.RUNNING
        task.started_at = started
        task.updated_at = started
        await self._store.update_task(task)
        self._notifier.status("task", task.id, TaskStatus.RUNNING, attempt=task.retry_count)
        logger.info("Task started", task_id=task.id, attempt=task.retry_count)

        target = await self._store.get_target(task.target_id)
        if target is None:
            raise TargetNotFoundError(task.target_id)
        self._notifier.progress("task", task.id, {"progress": 25, "stage": "dispatching"})

        begin = self._clock.monotonic()
        try:
            result = await self._providers.execute(
                target.provider_id,
                target.external_id,
                task.parameters,
                timeout_ms=task.timeout_ms,
            )
        except TimeoutError as e:
            raise TaskTimeoutError(task.timeout_ms) from e
        elapsed_ms = (self._clock.monotonic() - begin) * 1000
        self._notifier.progress("task", task.id, {"progress": 50, "stage": "executed"})

        if not result.success:
            raise ExecutionError(
                result.error or "Provider reported failure",
                details={"provider_id": target.provider_id, "unit_id": target.external_id},
            )
        self._notifier.progress("task", task.id, {"progress": 75, "stage": "recording"})

        finished = self._clock.now()
        task.status = TaskStatus.COMPLETED
        task.result = TaskResult(
            success=True,
            data=result.data,
            execution_time_ms=result.execution_time_ms or elapsed_ms,
            timestamp=finished,
        )
        task.completed_at = finished
        task.updated_at = finished
        await self._store.update_task(task)
        self._stats["tasks_completed"] += 1

        logger.info("Task completed", task_id=task.id, duration=task.duration)
        self._notifier.status("task", task.id, TaskStatus.COMPLETED)
        self._notifier.progress("task", task.id, {"progress": 100, "stage": "completed"})

    async def _handle_failure(self, task: Task, error: Exception) -> None:
        is_timeout = isinstance(error, TaskTimeoutError)
        if is_timeout:
            self._stats["tasks_timed_out"] += 1

        retryable = not is_timeout or self.config.retry_on_timeout
        if retryable and task.retry_count < task.max_retries:
            await self._schedule_retry(task, error)
        else:
            await self._mark_failed(task, error)

    async def _schedule_retry(self, task: Task, error: Exception) -> None:
        delay_ms = task_retry_delay_ms(
            task.retry_count,
            base_ms=self.config.base_backoff_ms,
            max_ms=self.config.max_backoff_ms,
        )
        now = self._clock.now()
        retry_at = now + timedelta(milliseconds=delay_ms)

        task.retry_count += 1
        task.status = TaskStatus.PENDING
        task.started_at = None
        task.scheduled_at = retry_at
        task.updated_at = now
        await self._store.update_task(task)
        self._queue.push(QueuedTask.from_task(task, scheduled_at=retry_at))
        self._stats["tasks_retried"] += 1

        logger.warning(
            "Task failed, retrying",
            task_id=task.id,
            retry_count=task.retry_count,
            max_retries=task.max_retries,
            delay_ms=delay_ms,
            error=str(error),
        )
        self._notifier.status(
            "task",
            task.id,
            TaskStatus.PENDING,
            event_type=EventType.TASK_RETRYING,
            retrying=True,
            retry_count=task.retry_count,
            delay_ms=delay_ms,
            error=str(error),
        )

    async def _mark_failed(self, task: Task, error: Exception) -> None:
        now = self._clock.now()
        message = str(error) or type(error).__name__
        task.status = TaskStatus.FAILED
        task.error = TaskError(
            message=message,
            traceback="".join(traceback.format_exception(error)),
            timestamp=now,
            retry_count=task.retry_count,
            max_retries_exceeded=task.retry_count >= task.max_retries,
        )
        task.completed_at = now
        task.updated_at = now
        await self._store.update_task(task)
        self._stats["tasks_failed"] += 1

        logger.error(
            "Task failed",
            task_id=task.id,
            retry_count=task.retry_count,
            error=message,
        )
        self._notifier.status("task", task.id, TaskStatus.FAILED, error=message)
        self._notifier.error(
            "task",
            task.id,
            message,
            retry_count=task.retry_count,
            max_retries_exceeded=task.error.max_retries_exceeded,
        )

    async def _mark_cancelled(self, task_id: str, *, reason: str) -> Task:
        task = await self.get_task(task_id)
        if task.is_finished:
            return task

        now = self._clock.now()
        error = TaskCancelledError(reason)
        task.status = TaskStatus.CANCELLED
        task.error = TaskError(message=str(error), timestamp=now, retry_count=task.retry_count)
        task.completed_at = now
        task.updated_at = now
        task = await self._store.update_task(task)
        self._stats["tasks_cancelled"] += 1

        logger.info("Task cancelled", task_id=task_id, reason=reason)
        self._notifier.status(
            "task",
            task_id,
            TaskStatus.CANCELLED,
            reason=reason,
            error=type(error).__name__,
        )
        return task
