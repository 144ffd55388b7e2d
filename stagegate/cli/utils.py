"""CLI helper utilities for stagegate commands."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from stagegate.compiler import Pipeline, YamlPipelineBuilder, load_config
from stagegate.kernel.config.models import StageGateConfig
from stagegate.kernel.domain.run import RunResult, StageState
from stagegate.kernel.exceptions import ExitCode, GraphError, ManifestError, StageGateError

console = Console()
err_console = Console(stderr=True)

_STATE_STYLES = {
    StageState.SUCCEEDED: "green",
    StageState.FAILED: "red",
    StageState.SKIPPED: "yellow",
    StageState.RUNNING: "cyan",
    StageState.PENDING: "dim",
}


def get_config(ctx: typer.Context | None) -> StageGateConfig:
    """Return the config loaded by the global callback (or discover it)."""
    if ctx is not None and isinstance(ctx.obj, dict) and "config" in ctx.obj:
        return ctx.obj["config"]
    return load_config()


def parse_bindings(pairs: list[str] | None) -> dict[str, str]:
    """Parse ``--set name=value`` options.

    Raises
    ------
    typer.BadParameter
        If an entry has no ``=``
    """
    bindings: dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"expected name=value, got {pair!r}", param_hint="--set")
        bindings[name.strip()] = value
    return bindings


def load_pipeline(
    manifest: Path,
    config: StageGateConfig,
    environment: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> Pipeline:
    """Compile *manifest*, exiting with the invalid-graph code on manifest errors."""
    try:
        return YamlPipelineBuilder(config.orchestrator).build_from_yaml_file(
            manifest, environment=environment, overrides=overrides
        )
    except (ManifestError, GraphError) as e:
        err_console.print(f"[red]✗ Invalid manifest:[/red] {e}")
        raise typer.Exit(int(ExitCode.INVALID_GRAPH)) from e
    except StageGateError as e:
        err_console.print(f"[red]✗ Error:[/red] {e}")
        raise typer.Exit(int(ExitCode.INVALID_GRAPH)) from e


def render_result(result: RunResult) -> None:
    """Print a per-stage table and the run summary."""
    table = Table(title=f"Run {result.run_id}", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("State")
    table.add_column("Health")
    table.add_column("Duration", justify="right")
    table.add_column("Detail")

    for stage_id, outcome in sorted(result.stages.items()):
        style = _STATE_STYLES.get(outcome.state, "white")
        duration = "-"
        if outcome.started_at and outcome.ended_at:
            duration = f"{(outcome.ended_at - outcome.started_at).total_seconds():.2f}s"
        detail = ""
        if outcome.error is not None:
            detail = outcome.error.message
        elif outcome.reused:
            detail = "reused"
        table.add_row(
            stage_id,
            outcome.kind.value,
            f"[{style}]{outcome.state.value}[/{style}]",
            outcome.health.value if outcome.health else "-",
            duration,
            detail,
        )

    if result.stages:
        console.print(table)

    status_style = "green" if result.succeeded else "red"
    env = f" [{result.environment}]" if result.environment else ""
    console.print(
        f"[{status_style}]Run {result.run_id}{env}: {result.status.value}[/{status_style}] "
        f"(exit code {int(result.exit_code)})"
    )
    for failure in result.failures:
        origin = f"{failure.origin_stage_id}: " if failure.origin_stage_id else ""
        cause = f" ({failure.cause_type})" if failure.cause_type else ""
        console.print(f"  [red]✗[/red] {origin}{failure.type}{cause}: {failure.message}")


def build_orchestrator(
    config: StageGateConfig, state_dir: Path | None = None, verbose: bool = False
) -> Any:
    """Orchestrator wired to the file drivers under the state directory."""
    from stagegate.drivers.apply_ledger import FileApplyLedger
    from stagegate.drivers.artifact_store import FileArtifactStore
    from stagegate.drivers.observer_manager import LocalObserverManager
    from stagegate.drivers.run_store import FileRunStore
    from stagegate.kernel.orchestration import Orchestrator
    from stagegate.kernel.orchestration.events import ALL_EVENTS, LoggingObserver

    root = state_dir or config.state_path
    observer_manager = LocalObserverManager()
    observer_manager.register(
        LoggingObserver(verbose=verbose), observer_id="logging", event_types=ALL_EVENTS
    )
    return Orchestrator(
        config.orchestrator,
        artifact_store=FileArtifactStore(root / "artifacts"),
        ledger=FileApplyLedger(root / "ledger"),
        run_store=FileRunStore(root / "runs"),
        observer_manager=observer_manager,
    )
