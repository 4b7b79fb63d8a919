"""Workflow orchestrator: definitions, validation and step-by-step execution."""

from __future__ import annotations

import asyncio
import contextlib
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

from orchestrion.core.engine.clock import DEFAULT_CLOCK
from orchestrion.core.engine.context import resolve_parameters, should_execute_step
from orchestrion.core.engine.retry import exponential_backoff_ms
from orchestrion.core.engine.validation import WorkflowValidator
from orchestrion.core.errors import (
    ExecutionError,
    ExecutionNotFoundError,
    InvalidStateError,
    TargetNotFoundError,
    TaskTimeoutError,
    WorkflowInvalidError,
    WorkflowNotFoundError,
)
from orchestrion.core.events.notifier import EngineNotifier
from orchestrion.core.events.types import EventType
from orchestrion.core.models.config import WorkflowConfig
from orchestrion.core.models.schemas import (
    ExecutionOptions,
    WorkflowCreate,
    WorkflowQuery,
    WorkflowStepInput,
    WorkflowUpdate,
    parse_input,
)
from orchestrion.core.models.workflow import (
    ExecutionStatus,
    RetryConfig,
    StepCondition,
    StepExecution,
    StepStatus,
    Workflow,
    WorkflowContext,
    WorkflowExecution,
    WorkflowProgress,
    WorkflowStatus,
    WorkflowStep,
)

if TYPE_CHECKING:
    from orchestrion.core.engine.clock import Clock
    from orchestrion.core.interfaces.storage import IPersistence
    from orchestrion.core.models.pagination import Page
    from orchestrion.core.models.provider import Target
    from orchestrion.core.models.workflow import ValidationResult
    from orchestrion.core.registry.providers import ProviderRegistry

logger = structlog.get_logger(__name__)


class WorkflowOrchestrator:
    """
    Manages workflow definitions and runs their executions.

    Each execution runs in its own asyncio task. Steps run one at a time in
    ascending ``step_order``; conditions decide whether a step runs, never
    the order. Executions in flight live in an id-keyed registry; finished
    ones move to a bounded cache of recent executions.
    """

    def __init__(
        self,
        store: IPersistence,
        providers: ProviderRegistry,
        notifier: EngineNotifier | None = None,
        config: WorkflowConfig | None = None,
        *,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or WorkflowConfig()
        self._store = store
        self._providers = providers
        self._notifier = notifier or EngineNotifier()
        self._clock = clock or DEFAULT_CLOCK
        self._sleep = sleep
        self._validator = WorkflowValidator(store)

        self._executions: dict[str, WorkflowExecution] = {}
        self._handles: dict[str, asyncio.Task[None]] = {}
        self._finished: OrderedDict[str, WorkflowExecution] = OrderedDict()

        self._stats = {
            "executions_started": 0,
            "executions_completed": 0,
            "executions_failed": 0,
            "executions_cancelled": 0,
            "steps_executed": 0,
            "steps_failed": 0,
            "steps_skipped": 0,
        }

    @property
    def stats(self) -> dict[str, int]:
        return self._stats.copy()

    @property
    def active_count(self) -> int:
        return len(self._executions)

    # =========================================================================
    # Definitions
    # =========================================================================

    async def create_workflow(
        self,
        data: WorkflowCreate | dict[str, Any],
        created_by: str | None = None,
    ) -> Workflow:
        """
        Create a workflow in DRAFT status.

        Step ``depends_on`` entries may reference sibling steps by name;
        they are rewritten to the assigned step ids.

        Raises:
            ValidationError: Invalid payload
            WorkflowInvalidError: Definition failed validation
        """
        payload = parse_input(WorkflowCreate, data)
        now = self._clock.now()
        workflow = Workflow(
            id=str(uuid4()),
            name=payload.name,
            description=payload.description,
            status=WorkflowStatus.DRAFT,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        workflow.steps = self._build_steps(payload.steps, workflow.id)

        result = await self._validator.validate(workflow)
        if not result.valid:
            raise WorkflowInvalidError(result)

        workflow = await self._store.create_workflow(workflow)
        logger.info(
            "Workflow created",
            workflow_id=workflow.id,
            name=workflow.name,
            steps=len(workflow.steps),
            warnings=len(result.warnings),
        )
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self._store.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def get_workflows(
        self, query: WorkflowQuery | dict[str, Any] | None = None
    ) -> Page[Workflow]:
        return await self._store.list_workflows(parse_input(WorkflowQuery, query))

    async def update_workflow(
        self,
        workflow_id: str,
        data: WorkflowUpdate | dict[str, Any],
    ) -> Workflow:
        """
        Update a workflow. Provided steps replace the existing steps.

        Raises:
            WorkflowNotFoundError: Unknown workflow
            InvalidStateError: An execution of the workflow is in flight
            WorkflowInvalidError: New steps failed validation
        """
        payload = parse_input(WorkflowUpdate, data)
        workflow = await self.get_workflow(workflow_id)
        if self._has_live_execution(workflow_id):
            raise InvalidStateError(f"Workflow {workflow_id} has an execution in progress")

        if payload.name is not None:
            workflow.name = payload.name
        if payload.description is not None:
            workflow.description = payload.description
        if payload.status is not None:
            workflow.status = payload.status
        if payload.steps is not None:
            workflow.steps = self._build_steps(payload.steps, workflow.id)
            result = await self._validator.validate(workflow)
            if not result.valid:
                raise WorkflowInvalidError(result)

        workflow.updated_at = self._clock.now()
        workflow = await self._store.update_workflow(workflow)
        logger.info("Workflow updated", workflow_id=workflow_id, status=workflow.status.value)
        return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        """
        Delete a workflow and its steps.

        Raises:
            WorkflowNotFoundError: Unknown workflow
            InvalidStateError: An execution of the workflow is in flight
        """
        await self.get_workflow(workflow_id)
        if self._has_live_execution(workflow_id):
            raise InvalidStateError(f"Cannot delete workflow {workflow_id} while it is executing")
        deleted = await self._store.delete_workflow(workflow_id)
        logger.info("Workflow deleted", workflow_id=workflow_id)
        return deleted

    async def validate_workflow_definition(self, workflow: Workflow | str) -> ValidationResult:
        """Validate a workflow definition or a stored workflow by id."""
        if isinstance(workflow, str):
            workflow = await self.get_workflow(workflow)
        return await self._validator.validate(workflow)

    def _build_steps(self, inputs: list[WorkflowStepInput], workflow_id: str) -> list[WorkflowStep]:
        ids = [item.id or str(uuid4()) for item in inputs]
        by_name = {item.name: step_id for item, step_id in zip(inputs, ids, strict=True)}

        steps = []
        for item, step_id in zip(inputs, ids, strict=True):
            conditions = [
                StepCondition(
                    type=cond.type,
                    expression=cond.expression,
                    depends_on=[dep if dep in ids else by_name.get(dep, dep) for dep in cond.depends_on],
                )
                for cond in item.conditions
            ]
            steps.append(
                WorkflowStep(
                    id=step_id,
                    workflow_id=workflow_id,
                    name=item.name,
                    target_id=item.target_id,
                    step_order=item.step_order,
                    parameters=dict(item.parameters),
                    conditions=conditions,
                    retry_config=(
                        RetryConfig(**item.retry_config.model_dump()) if item.retry_config else None
                    ),
                    timeout_ms=item.timeout_ms,
                )
            )
        return steps

    def _has_live_execution(self, workflow_id: str) -> bool:
        return any(e.workflow_id == workflow_id for e in self._executions.values())

    # =========================================================================
    # Executions
    # =========================================================================

    async def execute_workflow(
        self,
        workflow_id: str,
        options: ExecutionOptions | dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> str:
        """
        Start an execution of an ACTIVE workflow.

        Returns immediately with the execution id; steps run in the
        background. A dry run validates and completes without invoking
        any provider.

        Raises:
            WorkflowNotFoundError: Unknown workflow
            InvalidStateError: Workflow is not ACTIVE
            WorkflowInvalidError: Workflow failed validation
        """
        opts = parse_input(ExecutionOptions, options)
        workflow = await self.get_workflow(workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE:
            raise InvalidStateError(
                f"Workflow {workflow_id} is not active (status: {workflow.status.value})"
            )

        validation = await self._validator.validate(workflow)
        if not validation.valid:
            raise WorkflowInvalidError(validation)

        execution_id = str(uuid4())
        execution = WorkflowExecution(
            id=execution_id,
            workflow_id=workflow_id,
            context=WorkflowContext(
                variables=dict(opts.variables),
                metadata=dict(opts.metadata),
            ),
            steps=[
                StepExecution(step_id=step.id, target_id=step.target_id, execution_id=execution_id)
                for step in workflow.ordered_steps
            ],
            started_at=self._clock.now(),
            created_by=created_by,
            dry_run=opts.dry_run,
        )
        self._executions[execution_id] = execution
        self._stats["executions_started"] += 1

        logger.info(
            "Workflow execution started",
            execution_id=execution_id,
            workflow_id=workflow_id,
            dry_run=opts.dry_run,
        )
        self._notifier.status(
            "workflow",
            execution_id,
            ExecutionStatus.PENDING,
            workflow_id=workflow_id,
            workflow_name=workflow.name,
            total_steps=len(workflow.steps),
        )

        if opts.dry_run:
            self._finish(
                execution,
                ExecutionStatus.COMPLETED,
                dry_run=True,
                validation=validation.to_dict(),
            )
        else:
            self._handles[execution_id] = asyncio.create_task(
                self._run(workflow, execution), name=f"workflow-{execution_id}"
            )
        return execution_id

    def get_workflow_execution(self, execution_id: str) -> WorkflowExecution:
        """
        Snapshot of a live or recently finished execution.

        Raises:
            ExecutionNotFoundError: Unknown or evicted execution
        """
        return self._lookup(execution_id).snapshot()

    def get_workflow_progress(self, execution_id: str) -> WorkflowProgress:
        return self._lookup(execution_id).progress()

    def list_executions(self) -> list[WorkflowExecution]:
        """Live executions followed by recently finished ones, newest last."""
        return [e.snapshot() for e in [*self._executions.values(), *self._finished.values()]]

    async def cancel_workflow_execution(self, execution_id: str) -> WorkflowExecution:
        """
        Cancel a live execution.

        Running steps become SKIPPED. Cancelling a finished execution
        returns it unchanged.

        Raises:
            ExecutionNotFoundError: Unknown or evicted execution
        """
        execution = self._lookup(execution_id)
        if execution.is_finished:
            return execution.snapshot()

        now = self._clock.now()
        for step_execution in execution.steps:
            if step_execution.status == StepStatus.RUNNING:
                step_execution.status = StepStatus.SKIPPED
                step_execution.completed_at = now

        self._finish(execution, ExecutionStatus.CANCELLED, cancelled=True)

        handle = self._handles.pop(execution_id, None)
        if handle is not None and handle is not asyncio.current_task():
            handle.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await handle
        return execution.snapshot()

    async def cleanup(self) -> None:
        """Cancel every live execution."""
        for execution_id in list(self._executions):
            await self.cancel_workflow_execution(execution_id)
        logger.info("Workflow orchestrator cleaned up")

    def _lookup(self, execution_id: str) -> WorkflowExecution:
        execution = self._executions.get(execution_id) or self._finished.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    # =========================================================================
    # Run loop
    # =========================================================================

    async def _run(self, workflow: Workflow, execution: WorkflowExecution) -> None:
        try:
            execution.status = ExecutionStatus.RUNNING
            self._notifier.status(
                "workflow",
                execution.id,
                ExecutionStatus.RUNNING,
                started_at=execution.started_at.isoformat(),
            )

            for step in workflow.ordered_steps:
                if execution.is_finished:
                    break

                step_execution = execution.step(step.id)
                if step_execution is None:
                    raise ExecutionError(f"No step execution recorded for step {step.id}")

                if not should_execute_step(step, execution):
                    step_execution.status = StepStatus.SKIPPED
                    step_execution.completed_at = self._clock.now()
                    self._stats["steps_skipped"] += 1
                    self._notifier.status("step", step.id, StepStatus.SKIPPED, execution_id=execution.id)
                else:
                    await self._execute_step(step, execution, step_execution)

                self._notifier.progress("workflow", execution.id, execution.progress().to_dict())
                if step_execution.status == StepStatus.FAILED and not step.continues_on_failure:
                    raise ExecutionError(
                        f'Step "{step.name}" failed: {step_execution.error}',
                        details={"step_id": step.id},
                    )

            if not execution.is_finished:
                progress = execution.progress()
                self._finish(
                    execution,
                    ExecutionStatus.COMPLETED,
                    total_steps=progress.total_steps,
                    completed_steps=progress.completed_steps,
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._abort(execution, e)
        finally:
            if self._handles.get(execution.id) is asyncio.current_task():
                del self._handles[execution.id]

    async def _execute_step(
        self,
        step: WorkflowStep,
        execution: WorkflowExecution,
        step_execution: StepExecution,
    ) -> None:
        step_execution.status = StepStatus.RUNNING
        step_execution.started_at = self._clock.now()
        began = self._clock.monotonic()
        self._notifier.status("step", step.id, StepStatus.RUNNING, execution_id=execution.id)
        logger.info(
            "Executing workflow step",
            execution_id=execution.id,
            step_id=step.id,
            step_name=step.name,
            target_id=step.target_id,
        )

        try:
            step_execution.input = resolve_parameters(step.parameters, execution.context)
            target = await self._store.get_target(step.target_id)
            if target is None:
                raise TargetNotFoundError(step.target_id)
            output = await self._call_with_retry(step, execution, step_execution, target)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            step_execution.status = StepStatus.FAILED
            step_execution.error = str(e) or type(e).__name__
            step_execution.completed_at = self._clock.now()
            step_execution.execution_time_ms = (self._clock.monotonic() - began) * 1000
            self._stats["steps_failed"] += 1
            logger.error(
                "Workflow step failed",
                execution_id=execution.id,
                step_id=step.id,
                step_name=step.name,
                retry_count=step_execution.retry_count,
                error=step_execution.error,
            )
            self._notifier.status(
                "step",
                step.id,
                StepStatus.FAILED,
                execution_id=execution.id,
                error=step_execution.error,
            )
            return

        step_execution.output = output
        step_execution.status = StepStatus.COMPLETED
        step_execution.completed_at = self._clock.now()
        step_execution.execution_time_ms = (self._clock.monotonic() - began) * 1000
        execution.context.step_outputs[step.id] = output
        self._stats["steps_executed"] += 1

        logger.info(
            "Workflow step completed",
            execution_id=execution.id,
            step_id=step.id,
            attempts=step_execution.retry_count + 1,
        )
        self._notifier.status("step", step.id, StepStatus.COMPLETED, execution_id=execution.id)

    async def _call_with_retry(
        self,
        step: WorkflowStep,
        execution: WorkflowExecution,
        step_execution: StepExecution,
        target: Target,
    ) -> Any:
        policy = step.retry_config or RetryConfig(**self.config.default_retry.model_dump())

        attempt = 0
        while True:
            try:
                result = await self._providers.execute(
                    target.provider_id,
                    target.external_id,
                    step_execution.input,
                    timeout_ms=step.timeout_ms,
                )
            except TimeoutError as e:
                # Timeouts are surfaced, not retried
                step_execution.retry_count = attempt
                raise TaskTimeoutError(step.timeout_ms) from e
            except Exception as e:
                error: Exception = e
            else:
                if result.success:
                    return result.data
                error = ExecutionError(result.error or "Provider reported failure")

            step_execution.retry_count = attempt
            if attempt >= policy.max_retries:
                raise error

            delay_ms = exponential_backoff_ms(
                attempt,
                base_ms=policy.backoff_ms,
                multiplier=policy.backoff_multiplier,
                max_ms=policy.max_backoff_ms,
            )
            logger.warning(
                "Workflow step failed, retrying",
                execution_id=execution.id,
                step_id=step.id,
                attempt=attempt + 1,
                max_retries=policy.max_retries,
                delay_ms=delay_ms,
                error=str(error),
            )
            self._notifier.status(
                "step",
                step.id,
                StepStatus.RUNNING,
                event_type=EventType.STEP_RETRYING,
                execution_id=execution.id,
                attempt=attempt + 1,
                delay_ms=delay_ms,
            )
            await self._sleep(delay_ms / 1000)
            attempt += 1

    def _abort(self, execution: WorkflowExecution, error: Exception) -> None:
        if execution.is_finished:
            return
        message = str(error) or type(error).__name__
        now = self._clock.now()
        for step_execution in execution.steps:
            if step_execution.status == StepStatus.PENDING:
                step_execution.status = StepStatus.SKIPPED
                step_execution.completed_at = now

        execution.error = message
        logger.error("Workflow execution failed", execution_id=execution.id, error=message)
        self._finish(execution, ExecutionStatus.FAILED, error=message)
        self._notifier.error("workflow", execution.id, message, workflow_id=execution.workflow_id)

    def _finish(self, execution: WorkflowExecution, status: ExecutionStatus, **metadata: Any) -> None:
        execution.status = status
        execution.completed_at = self._clock.now()
        self._executions.pop(execution.id, None)

        if self.config.terminal_cache_size > 0:
            self._finished[execution.id] = execution
            while len(self._finished) > self.config.terminal_cache_size:
                self._finished.popitem(last=False)

        self._stats[f"executions_{status.value}"] += 1
        duration = (execution.completed_at - execution.started_at).total_seconds()
        logger.info(
            "Workflow execution finished",
            execution_id=execution.id,
            status=status.value,
            duration=duration,
        )
        self._notifier.status(
            "workflow",
            execution.id,
            status,
            workflow_id=execution.workflow_id,
            completed_at=execution.completed_at.isoformat(),
            **metadata,
        )
