"""Apply command: execute a manifest and exit with the run's result code."""

import asyncio
import contextlib
import signal
import uuid
from pathlib import Path
from typing import Annotated, Any

import typer

from stagegate.cli.utils import (
    build_orchestrator,
    get_config,
    load_pipeline,
    parse_bindings,
    render_result,
)
from stagegate.kernel.domain.run import RunResult


async def _apply(orchestrator: Any, pipeline: Any, run_id: str) -> RunResult:
    loop = asyncio.get_running_loop()
    # SIGINT cancels the run cooperatively instead of killing stages mid-action
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, run_id)
    try:
        return await orchestrator.apply(
            pipeline.graph, pipeline.bindings, environment=pipeline.environment, run_id=run_id
        )
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)
        if orchestrator.observer_manager is not None:
            await orchestrator.observer_manager.close()


def apply(
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
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", help="Directory for artifacts, the apply ledger and runs"),
    ] = None,
    run_id: Annotated[str | None, typer.Option("--run-id", help="Explicit run id")] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Print the run result as JSON")] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-V", help="Log every probe attempt")
    ] = False,
) -> None:
    """Apply the manifest and exit with 0 (success), 1 (stage failed or
    cancelled), 2 (invalid graph) or 3 (service never became healthy).

    Examples
    --------
    stagegate apply release.yaml --env staging --set revision=abc123
    """
    config = get_config(ctx)
    pipeline = load_pipeline(manifest, config, env, parse_bindings(set_))
    orchestrator = build_orchestrator(config, state_dir, verbose=verbose)
    run_id = run_id or uuid.uuid4().hex[:12]

    result = asyncio.run(_apply(orchestrator, pipeline, run_id))

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        render_result(result)
    raise typer.Exit(int(result.exit_code))
