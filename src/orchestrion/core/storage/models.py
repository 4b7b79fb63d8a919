"""SQLAlchemy table definitions for orchestrion persistence.

Stores:
- Targets discovered on or registered for providers
- Tasks with their results and errors
- Workflow definitions and their steps
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TargetRecord(Base):
    """A unit hosted by an execution provider."""

    __tablename__ = "targets"

    id = Column(String(255), primary_key=True)
    name = Column(String(200), nullable=False)
    provider_id = Column(String(100), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    description = Column(Text, nullable=True)
    capabilities = Column(JSON, default=list)
    extra = Column("metadata", JSON, default=dict)

    def __repr__(self) -> str:
        return f"<TargetRecord {self.id} {self.status}>"


class TaskRecord(Base):
    """Task row."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    target_id = Column(String(255), nullable=False, index=True)
    workflow_id = Column(String(36), nullable=True, index=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    priority = Column(Integer, nullable=False, default=2)
    parameters = Column(JSON, default=dict)

    # Scheduling
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)
    timeout_ms = Column(Integer, default=30000)

    # Outcome (JSON)
    result = Column(JSON, nullable=True)
    error = Column(JSON, nullable=True)

    # Audit
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_tasks_status_priority", "status", "priority"),)

    def __repr__(self) -> str:
        return f"<TaskRecord {self.id} {self.status}>"


class WorkflowRecord(Base):
    """Workflow definition row. Steps live in ``workflow_steps``."""

    __tablename__ = "workflows"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowRecord {self.id} {self.name}>"


class WorkflowStepRecord(Base):
    """One step of a workflow."""

    __tablename__ = "workflow_steps"

    id = Column(String(36), primary_key=True)
    workflow_id = Column(
        String(36),
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(200), nullable=False)
    target_id = Column(String(255), nullable=False)
    step_order = Column(Integer, nullable=False, default=0)
    # Position in the definition, preserves declaration order among equal step_order
    position = Column(Integer, nullable=False, default=0)
    parameters = Column(JSON, default=dict)
    conditions = Column(JSON, default=list)
    retry_config = Column(JSON, nullable=True)
    timeout_ms = Column(Integer, default=60000)
