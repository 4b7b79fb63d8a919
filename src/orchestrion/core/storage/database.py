"""SQL persistence over SQLAlchemy's async ORM.

SQLite through aiosqlite by default; any async SQLAlchemy URL works.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from orchestrion.core.models.pagination import Page
from orchestrion.core.models.provider import Target, TargetStatus
from orchestrion.core.models.schemas import TaskQuery, WorkflowQuery
from orchestrion.core.models.task import Task, TaskError, TaskPriority, TaskResult, TaskStatus
from orchestrion.core.models.workflow import (
    RetryConfig,
    StepCondition,
    Workflow,
    WorkflowStatus,
    WorkflowStep,
)
from orchestrion.core.storage.models import (
    Base,
    TargetRecord,
    TaskRecord,
    WorkflowRecord,
    WorkflowStepRecord,
)

logger = structlog.get_logger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///orchestrion.db"
    echo: bool = False  # Log SQL queries

    # Pool settings (non-SQLite)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: float = 30.0
    pool_recycle: int = 1800


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ==================== Row Mapping ====================


def _target_from_record(record: TargetRecord) -> Target:
    return Target(
        id=record.id,
        name=record.name,
        provider_id=record.provider_id,
        external_id=record.external_id,
        status=TargetStatus(record.status),
        description=record.description,
        capabilities=list(record.capabilities or []),
        metadata=dict(record.extra or {}),
    )


def _apply_task(record: TaskRecord, task: Task) -> None:
    record.name = task.name
    record.description = task.description
    record.target_id = task.target_id
    record.workflow_id = task.workflow_id
    record.status = task.status.value
    record.priority = task.priority.value
    record.parameters = task.parameters
    record.scheduled_at = task.scheduled_at
    record.retry_count = task.retry_count
    record.max_retries = task.max_retries
    record.timeout_ms = task.timeout_ms
    record.result = task.result.to_dict() if task.result else None
    record.error = task.error.to_dict() if task.error else None
    record.created_by = task.created_by
    record.created_at = task.created_at
    record.updated_at = task.updated_at
    record.started_at = task.started_at
    record.completed_at = task.completed_at


def _task_from_record(record: TaskRecord) -> Task:
    return Task(
        id=record.id,
        name=record.name,
        description=record.description,
        target_id=record.target_id,
        workflow_id=record.workflow_id,
        status=TaskStatus(record.status),
        priority=TaskPriority(record.priority),
        parameters=dict(record.parameters or {}),
        scheduled_at=_utc(record.scheduled_at),
        retry_count=record.retry_count,
        max_retries=record.max_retries,
        timeout_ms=record.timeout_ms,
        result=TaskResult.from_dict(record.result) if record.result else None,
        error=TaskError.from_dict(record.error) if record.error else None,
        created_by=record.created_by,
        created_at=_utc(record.created_at),
        updated_at=_utc(record.updated_at),
        started_at=_utc(record.started_at),
        completed_at=_utc(record.completed_at),
    )


def _step_records(workflow: Workflow) -> list[WorkflowStepRecord]:
    return [
        WorkflowStepRecord(
            id=step.id,
            workflow_id=workflow.id,
            name=step.name,
            target_id=step.target_id,
            step_order=step.step_order,
            position=position,
            parameters=step.parameters,
            conditions=[c.to_dict() for c in step.conditions],
            retry_config=step.retry_config.to_dict() if step.retry_config else None,
            timeout_ms=step.timeout_ms,
        )
        for position, step in enumerate(workflow.steps)
    ]


def _step_from_record(record: WorkflowStepRecord) -> WorkflowStep:
    return WorkflowStep(
        id=record.id,
        workflow_id=record.workflow_id,
        name=record.name,
        target_id=record.target_id,
        step_order=record.step_order,
        parameters=dict(record.parameters or {}),
        conditions=[StepCondition.from_dict(c) for c in record.conditions or []],
        retry_config=RetryConfig.from_dict(record.retry_config) if record.retry_config else None,
        timeout_ms=record.timeout_ms,
    )


def _workflow_from_record(record: WorkflowRecord, steps: list[WorkflowStepRecord]) -> Workflow:
    return Workflow(
        id=record.id,
        name=record.name,
        description=record.description,
        status=WorkflowStatus(record.status),
        steps=[_step_from_record(s) for s in sorted(steps, key=lambda s: s.position)],
        created_by=record.created_by,
        created_at=_utc(record.created_at),
        updated_at=_utc(record.updated_at),
    )


class DatabaseStore:
    """IPersistence backed by a SQL database.

    Usage:
        store = DatabaseStore(DatabaseConfig(url="sqlite+aiosqlite:///:memory:"))
        await store.initialize()
        task = await store.create_task(Task(name="sync", target_id="crm:sync"))
        await store.close()
    """

    def __init__(self, config: DatabaseConfig | None = None) -> None:
        """Initialize database store.

        Args:
            config: Database configuration
        """
        self.config = config or DatabaseConfig()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._initialized = False

    async def initialize(self) -> None:
        """Connect and create tables."""
        if self._initialized:
            return

        url = self.config.url
        engine_kwargs: dict[str, Any] = {"echo": self.config.echo}

        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_size"] = self.config.pool_size
            engine_kwargs["max_overflow"] = self.config.max_overflow
            engine_kwargs["pool_timeout"] = self.config.pool_timeout
            engine_kwargs["pool_recycle"] = self.config.pool_recycle

        self._engine = create_async_engine(url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._initialized = True
        logger.info("Database initialized", url=url.split("@")[-1])  # Hide credentials

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._initialized = False
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        if not self._session_factory:
            await self.initialize()
        if self._session_factory is None:
            raise RuntimeError("Database store is not initialized")

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ==================== Target Operations ====================

    async def get_target(self, target_id: str) -> Target | None:
        async with self.session() as session:
            record = await session.get(TargetRecord, target_id)
            return _target_from_record(record) if record else None

    async def list_targets(self) -> list[Target]:
        async with self.session() as session:
            result = await session.execute(select(TargetRecord).order_by(TargetRecord.id))
            return [_target_from_record(r) for r in result.scalars().all()]

    async def save_target(self, target: Target) -> Target:
        async with self.session() as session:
            await session.merge(
                TargetRecord(
                    id=target.id,
                    name=target.name,
                    provider_id=target.provider_id,
                    external_id=target.external_id,
                    status=target.status.value,
                    description=target.description,
                    capabilities=list(target.capabilities),
                    extra=dict(target.metadata),
                )
            )
        return target

    # ==================== Task Operations ====================

    async def create_task(self, task: Task) -> Task:
        record = TaskRecord(id=task.id)
        _apply_task(record, task)
        try:
            async with self.session() as session:
                session.add(record)
        except IntegrityError as e:
            raise ValueError(f"Task {task.id} already exists") from e
        return task

    async def get_task(self, task_id: str) -> Task | None:
        async with self.session() as session:
            record = await session.get(TaskRecord, task_id)
            return _task_from_record(record) if record else None

    async def update_task(self, task: Task) -> Task:
        async with self.session() as session:
            record = await session.get(TaskRecord, task.id)
            if record is None:
                raise KeyError(task.id)
            _apply_task(record, task)
        return task

    async def delete_task(self, task_id: str) -> bool:
        async with self.session() as session:
            result = await session.execute(delete(TaskRecord).where(TaskRecord.id == task_id))
            return result.rowcount > 0

    async def list_tasks(self, query: TaskQuery) -> Page[Task]:
        conditions = []
        if query.status is not None:
            conditions.append(TaskRecord.status == query.status.value)
        if query.priority is not None:
            conditions.append(TaskRecord.priority == query.priority.value)
        if query.target_id is not None:
            conditions.append(TaskRecord.target_id == query.target_id)
        if query.workflow_id is not None:
            conditions.append(TaskRecord.workflow_id == query.workflow_id)
        if query.created_by is not None:
            conditions.append(TaskRecord.created_by == query.created_by)
        if query.date_from is not None:
            conditions.append(TaskRecord.created_at >= query.date_from)
        if query.date_to is not None:
            conditions.append(TaskRecord.created_at <= query.date_to)
        if query.search:
            pattern = f"%{query.search}%"
            conditions.append(
                or_(TaskRecord.name.ilike(pattern), TaskRecord.description.ilike(pattern))
            )

        column = getattr(TaskRecord, query.sort_by)
        order = column.desc() if query.sort_order == "desc" else column.asc()

        async with self.session() as session:
            total = await session.scalar(
                select(func.count()).select_from(TaskRecord).where(*conditions)
            )
            result = await session.execute(
                select(TaskRecord)
                .where(*conditions)
                .order_by(order, TaskRecord.id)
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
            )
            items = [_task_from_record(r) for r in result.scalars().all()]

        return Page(items=items, total=total or 0, page=query.page, limit=query.limit)

    # ==================== Workflow Operations ====================

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        try:
            async with self.session() as session:
                session.add(
                    WorkflowRecord(
                        id=workflow.id,
                        name=workflow.name,
                        description=workflow.description,
                        status=workflow.status.value,
                        created_by=workflow.created_by,
                        created_at=workflow.created_at,
                        updated_at=workflow.updated_at,
                    )
                )
                await session.flush()
                session.add_all(_step_records(workflow))
        except IntegrityError as e:
            raise ValueError(f"Workflow {workflow.id} already exists") from e
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        async with self.session() as session:
            record = await session.get(WorkflowRecord, workflow_id)
            if record is None:
                return None
            steps = await session.execute(
                select(WorkflowStepRecord).where(WorkflowStepRecord.workflow_id == workflow_id)
            )
            return _workflow_from_record(record, list(steps.scalars().all()))

    async def update_workflow(self, workflow: Workflow) -> Workflow:
        async with self.session() as session:
            record = await session.get(WorkflowRecord, workflow.id)
            if record is None:
                raise KeyError(workflow.id)
            record.name = workflow.name
            record.description = workflow.description
            record.status = workflow.status.value
            record.updated_at = workflow.updated_at

            # Steps are replaced wholesale
            await session.execute(
                delete(WorkflowStepRecord).where(WorkflowStepRecord.workflow_id == workflow.id)
            )
            session.add_all(_step_records(workflow))
        return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        async with self.session() as session:
            await session.execute(
                delete(WorkflowStepRecord).where(WorkflowStepRecord.workflow_id == workflow_id)
            )
            result = await session.execute(
                delete(WorkflowRecord).where(WorkflowRecord.id == workflow_id)
            )
            return result.rowcount > 0

    async def list_workflows(self, query: WorkflowQuery) -> Page[Workflow]:
        conditions = []
        if query.status is not None:
            conditions.append(WorkflowRecord.status == query.status.value)
        if query.created_by is not None:
            conditions.append(WorkflowRecord.created_by == query.created_by)
        if query.search:
            pattern = f"%{query.search}%"
            conditions.append(
                or_(WorkflowRecord.name.ilike(pattern), WorkflowRecord.description.ilike(pattern))
            )

        column = getattr(WorkflowRecord, query.sort_by)
        order = column.desc() if query.sort_order == "desc" else column.asc()

        async with self.session() as session:
            total = await session.scalar(
                select(func.count()).select_from(WorkflowRecord).where(*conditions)
            )
            result = await session.execute(
                select(WorkflowRecord)
                .where(*conditions)
                .order_by(order, WorkflowRecord.id)
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
            )
            records = list(result.scalars().all())

            steps_by_workflow: dict[str, list[WorkflowStepRecord]] = {r.id: [] for r in records}
            if records:
                steps = await session.execute(
                    select(WorkflowStepRecord).where(
                        WorkflowStepRecord.workflow_id.in_(list(steps_by_workflow))
                    )
                )
                for step in steps.scalars().all():
                    steps_by_workflow[step.workflow_id].append(step)

        items = [_workflow_from_record(r, steps_by_workflow[r.id]) for r in records]
        return Page(items=items, total=total or 0, page=query.page, limit=query.limit)
