"""Validate command: manifest format, stage declarations and graph structure."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from stagegate.cli.utils import err_console, get_config, load_pipeline
from stagegate.kernel.exceptions import ExitCode, GraphError

console = Console()


def validate(
    ctx: typer.Context,
    manifest: Annotated[
        Path,
        typer.Argument(help="Pipeline manifest", exists=True, dir_okay=False, readable=True),
    ],
) -> None:
    """Validate a manifest without executing anything.

    This command validates:
    - YAML syntax and manifest format (apiVersion, kind, metadata, spec)
    - Stage declarations, actions and probes
    - Dependencies (no cycles, no dangling references) and input wiring
    """
    pipeline = load_pipeline(manifest, get_config(ctx))
    try:
        pipeline.graph.validate()
    except GraphError as e:
        err_console.print(f"[red]✗ Validation failed:[/red] {e}")
        raise typer.Exit(int(ExitCode.INVALID_GRAPH)) from e

    console.print(f"[green]✓ Validation successful:[/green] {manifest}")
    console.print(f"  {len(pipeline.graph)} stages")
    if pipeline.environments:
        console.print(f"  environments: {', '.join(pipeline.environments)}")
    if required := sorted(pipeline.graph.required_bindings()):
        console.print(f"  bindings: {', '.join(required)}")
