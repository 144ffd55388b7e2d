"""Status command: show a stored run."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from stagegate.cli.utils import build_orchestrator, err_console, get_config, render_result
from stagegate.kernel.exceptions import RunNotFoundError


def status(
    ctx: typer.Context,
    run_id: Annotated[str, typer.Argument(help="Run id printed by apply")],
    state_dir: Annotated[
        Path | None, typer.Option("--state-dir", help="Directory holding stored runs")
    ] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Print the run result as JSON")] = False,
) -> None:
    """Show every stage's terminal state and the originating failures of a run."""
    orchestrator = build_orchestrator(get_config(ctx), state_dir)
    try:
        result = asyncio.run(orchestrator.status(run_id))
    except RunNotFoundError as e:
        err_console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from e

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        render_result(result)
