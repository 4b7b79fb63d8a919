"""Workflow command implementations."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from rich.console import Console
from rich.table import Table

from orchestrion.core.engine.engine import Engine
from orchestrion.core.errors import ExecutionError, ExecutionNotFoundError, WorkflowInvalidError
from orchestrion.core.models.config import Config, ProviderConfig
from orchestrion.core.models.provider import Target
from orchestrion.core.models.schemas import WorkflowCreate, WorkflowStepInput, parse_input
from orchestrion.core.models.workflow import (
    StepStatus,
    ValidationResult,
    Workflow,
    WorkflowExecution,
    WorkflowStatus,
)
from orchestrion.core.storage.memory import MemoryStore
from orchestrion.plugins.providers.mock import MockExecutionProvider

console = Console()

STATUS_STYLES = {
    StepStatus.COMPLETED: "green",
    StepStatus.FAILED: "red",
    StepStatus.SKIPPED: "yellow",
    StepStatus.RUNNING: "cyan",
    StepStatus.PENDING: "dim",
}


class TargetSpec(BaseModel):
    """A target declared in a workflow file."""

    provider_id: str
    external_id: str
    id: str | None = None
    name: str | None = None
    status: str = "active"
    # Fixed result data returned by a mock provider for this unit
    output: Any = None

    def to_target(self) -> Target:
        return Target.from_dict(
            {
                "id": self.id or f"{self.provider_id}:{self.external_id}",
                "name": self.name or self.external_id,
                "provider_id": self.provider_id,
                "external_id": self.external_id,
                "status": self.status,
            }
        )


class WorkflowFile(BaseModel):
    """Schema of a workflow YAML file."""

    name: str
    description: str | None = None
    providers: list[ProviderConfig] = Field(default_factory=list)
    targets: list[TargetSpec] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    steps: list[WorkflowStepInput] = Field(..., min_length=1)

    def definition(self) -> WorkflowCreate:
        return WorkflowCreate(name=self.name, description=self.description, steps=self.steps)


def load_workflow_file(path: Path) -> WorkflowFile:
    """
    Read and validate a workflow YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If the file does not match the schema
    """
    if not path.exists():
        raise FileNotFoundError(f"Workflow file not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    return parse_input(WorkflowFile, data)


def parse_variables(pairs: list[str]) -> dict[str, Any]:
    """Parse ``key=value`` pairs; values are read as YAML scalars."""
    variables: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid variable '{pair}', expected key=value")
        variables[key.strip()] = yaml.safe_load(value) if value else ""
    return variables


async def prepare_engine(engine: Engine, spec: WorkflowFile) -> None:
    """Register the file's providers and targets on a started engine."""
    declared = {p.id: p for p in spec.providers}
    for target_spec in spec.targets:
        declared.setdefault(
            target_spec.provider_id, ProviderConfig(id=target_spec.provider_id, type="mock")
        )

    for provider_config in declared.values():
        if provider_config.id in engine.providers:
            continue
        provider = engine.plugin_manager.create_provider(
            provider_config.type, **provider_config.options
        )
        engine.register_provider(provider_config.id, provider)
        await provider.connect()

    for target_spec in spec.targets:
        target = target_spec.to_target()
        provider = engine.providers.get(target.provider_id)
        if isinstance(provider, MockExecutionProvider):
            provider.add_unit(target.external_id, target.name, target_spec.output)
        await engine.save_target(target)


async def wait_for_execution(
    engine: Engine,
    execution_id: str,
    poll_interval: float = 0.05,
) -> WorkflowExecution:
    while True:
        execution = engine.get_workflow_execution(execution_id)
        if execution.is_finished:
            return execution
        await asyncio.sleep(poll_interval)


async def validate_workflow(path: Path, config: Config) -> ValidationResult:
    spec = load_workflow_file(path)
    async with Engine(config, store=MemoryStore()) as engine:
        await prepare_engine(engine, spec)
        try:
            workflow = await engine.create_workflow(spec.definition())
        except WorkflowInvalidError as e:
            return e.result
        return await engine.validate_workflow_definition(workflow.id)


async def run_workflow(
    path: Path,
    config: Config,
    variables: dict[str, Any],
    dry_run: bool = False,
) -> tuple[Workflow, WorkflowExecution]:
    """Create, activate and execute the workflow in a file; wait for the outcome."""
    spec = load_workflow_file(path)
    async with Engine(config, store=MemoryStore()) as engine:
        await prepare_engine(engine, spec)
        workflow = await engine.create_workflow(spec.definition(), created_by="cli")
        workflow = await engine.update_workflow(workflow.id, {"status": WorkflowStatus.ACTIVE})

        execution_id = await engine.execute_workflow(
            workflow.id,
            {"variables": {**spec.variables, **variables}, "dry_run": dry_run},
            created_by="cli",
        )
        try:
            execution = await wait_for_execution(engine, execution_id)
        except ExecutionNotFoundError:
            raise ExecutionError(
                "Execution result was evicted; raise workflow.terminal_cache_size"
            ) from None
    return workflow, execution


def print_validation(result: ValidationResult) -> None:
    if result.valid:
        console.print("[bold green]Workflow is valid[/bold green]")
    else:
        console.print("[bold red]Workflow is invalid[/bold red]")

    issues = [("error", i) for i in result.errors] + [("warning", i) for i in result.warnings]
    if not issues:
        return

    table = Table(title="Validation Issues")
    table.add_column("Severity")
    table.add_column("Type", style="cyan")
    table.add_column("Message")
    for severity, issue in issues:
        style = "red" if severity == "error" else "yellow"
        table.add_row(f"[{style}]{severity}[/{style}]", issue.type.value, issue.message)
    console.print(table)


def print_execution(workflow: Workflow, execution: WorkflowExecution) -> None:
    names = {step.id: step.name for step in workflow.steps}

    table = Table(title=f"Workflow '{workflow.name}'")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Output / Error")

    for step in execution.steps:
        style = STATUS_STYLES.get(step.status, "white")
        detail = step.error if step.error else ("" if step.output is None else str(step.output))
        table.add_row(
            names.get(step.step_id, step.step_id),
            f"[{style}]{step.status.value}[/{style}]",
            str(step.retry_count),
            f"{step.execution_time_ms:.0f}" if step.execution_time_ms is not None else "-",
            detail[:80],
        )
    console.print(table)

    progress = execution.progress()
    color = {"completed": "green", "failed": "red"}.get(execution.status.value, "yellow")
    console.print(
        f"[bold {color}]{execution.status.value.upper()}[/bold {color}] "
        f"{progress.completed_steps}/{progress.total_steps} steps completed"
        + (" (dry run)" if execution.dry_run else "")
    )
    if execution.error:
        console.print(f"[red]{execution.error}[/red]")
