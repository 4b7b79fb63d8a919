"""Main CLI application."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from orchestrion import __version__
from orchestrion.core.errors import OrchestrionError
from orchestrion.core.logging import configure_logging
from orchestrion.core.models.config import Config
from orchestrion.core.models.workflow import ExecutionStatus

app = typer.Typer(
    name="orchestrion",
    help="Task scheduling and workflow orchestration over external automation providers",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]Orchestrion[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log engine activity to stderr"),
    ] = False,
) -> None:
    """Orchestrion - run tasks and multi-step workflows against automation providers."""
    configure_logging(level="DEBUG" if verbose else "WARNING", structured=False)


def _load_config(path: Path | None) -> Config:
    if path is None:
        return Config()
    try:
        return Config.from_yaml(path)
    except Exception as e:
        console.print(f"[red]Failed to load config {path}: {e}[/red]")
        raise typer.Exit(1) from e


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[bold blue]Orchestrion[/bold blue] v{__version__}")


@app.command()
def validate(
    workflow_file: Annotated[
        Path,
        typer.Argument(help="Workflow definition (YAML)"),
    ],
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file path"),
    ] = None,
) -> None:
    """Validate a workflow definition without running it."""
    from orchestrion.cli.commands.workflow import print_validation, validate_workflow

    cfg = _load_config(config)
    try:
        result = asyncio.run(validate_workflow(workflow_file, cfg))
    except (OrchestrionError, FileNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    print_validation(result)
    if not result.valid:
        raise typer.Exit(1)


@app.command()
def run(
    workflow_file: Annotated[
        Path,
        typer.Argument(help="Workflow definition (YAML)"),
    ],
    var: Annotated[
        list[str] | None,
        typer.Option("--var", help="Workflow variable as key=value (repeatable)"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Validate and resolve without calling providers"),
    ] = False,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file path"),
    ] = None,
) -> None:
    """Run a workflow definition and print the outcome of every step."""
    from orchestrion.cli.commands.workflow import parse_variables, print_execution, run_workflow

    cfg = _load_config(config)
    try:
        variables = parse_variables(var or [])
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2) from e

    console.print(f"[bold blue]Running workflow[/bold blue] {workflow_file}")
    try:
        workflow, execution = asyncio.run(run_workflow(workflow_file, cfg, variables, dry_run))
    except (OrchestrionError, FileNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    print_execution(workflow, execution)
    if execution.status != ExecutionStatus.COMPLETED:
        raise typer.Exit(1)


@app.command()
def plugins() -> None:
    """List built-in plugins and the provider types they register."""
    from orchestrion.core.registry.manager import PluginManager

    manager = PluginManager()
    manager.load_builtin_plugins()

    table = Table(title="Plugins")
    table.add_column("Plugin", style="cyan")
    for name in manager.list_plugins():
        table.add_row(name)
    console.print(table)

    types = Table(title="Provider Types")
    types.add_column("Type", style="cyan")
    for provider_type in manager.list_provider_types():
        types.add_row(provider_type)
    console.print(types)


@app.command()
def config(
    action: Annotated[
        str,
        typer.Argument(help="Action: show, validate, init"),
    ],
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Config file"),
    ] = None,
) -> None:
    """Manage configuration."""
    if action == "show":
        cfg = Config.from_yaml(file) if file and file.exists() else Config()
        console.print("[bold]Current Configuration:[/bold]")
        console.print_json(data=cfg.to_dict())

    elif action == "validate":
        if file is None:
            console.print("[red]--file is required for validate[/red]")
            raise typer.Exit(2)
        try:
            Config.from_yaml(file)
        except Exception as e:
            console.print(f"[red]Config validation failed: {e}[/red]")
            raise typer.Exit(1) from e
        console.print(f"[green]Config file {file} is valid![/green]")

    elif action == "init":
        output_path = file or Path("./orchestrion.yaml")
        Config().to_yaml(output_path)
        console.print(f"[green]Config initialized at {output_path}[/green]")

    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        raise typer.Exit(2)


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
