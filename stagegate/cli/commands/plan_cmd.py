"""Plan command: show the levels a manifest would run in, without side effects."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from stagegate.cli.utils import err_console, get_config, load_pipeline, parse_bindings
from stagegate.kernel.exceptions import ExitCode, GraphError, UnboundVariableError
from stagegate.kernel.orchestration import Orchestrator

console = Console()


def plan(
    ctx: typer.Context,
    manifest: Annotated[
        Path,
        typer.Argument(help="Pipeline manifest", exists=True, dir_okay=False, readable=True),
    ],
    env: Annotated[
        str | None, typer.Option("--env", "-e", help="Environment (binding set) to use")
    ] = None,
    set_: Annotated[
        list[str] | None, typer.Option("--set", help="Override a binding: name=value")
    ] = None,
) -> None:
    """Resolve the stage graph into levels and print them.

    Exits with code 2 when the graph is invalid (cycle, dangling reference,
    bad input wiring) or a binding the graph references is missing.

    Examples
    --------
    stagegate plan release.yaml --env staging
    """
    config = get_config(ctx)
    pipeline = load_pipeline(manifest, config, env, parse_bindings(set_))
    orchestrator = Orchestrator(config.orchestrator)

    try:
        execution_plan = orchestrator.plan(pipeline.graph, pipeline.bindings)
    except GraphError as e:
        err_console.print(f"[red]✗ Invalid graph:[/red] {e}")
        raise typer.Exit(int(ExitCode.INVALID_GRAPH)) from e
    except UnboundVariableError as e:
        err_console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(int(ExitCode.INVALID_GRAPH)) from e

    table = Table(title=f"Plan: {pipeline.name}", show_header=True, header_style="bold magenta")
    table.add_column("Level", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("Depends on")
    table.add_column("Service")
    for index, level in enumerate(execution_plan.levels):
        for stage_id in level:
            stage = pipeline.graph[stage_id]
            table.add_row(
                str(index),
                stage_id,
                stage.kind.value,
                ", ".join(sorted(stage.depends_on)) or "-",
                "yes" if stage.is_service else "-",
            )
    console.print(table)
    console.print(
        f"{execution_plan.total_stages} stages in {len(execution_plan.levels)} levels"
    )
