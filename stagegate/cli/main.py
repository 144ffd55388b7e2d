"""stagegate CLI - Main entrypoint."""

from pathlib import Path

import typer
from rich.console import Console

from stagegate import __version__
from stagegate.cli.commands import apply_cmd, plan_cmd, status_cmd, validate_cmd
from stagegate.compiler import load_config
from stagegate.kernel.exceptions import ConfigurationError
from stagegate.kernel.logging import configure_logging

app = typer.Typer(
    name="stagegate",
    help="stagegate - dependency-graph orchestrator with health-gated readiness.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

console = Console()
err_console = Console(stderr=True)

app.command("plan", help="Show the levels a manifest would run in")(plan_cmd.plan)
app.command("apply", help="Apply a manifest")(apply_cmd.apply)
app.command("status", help="Show a stored run")(status_cmd.status)
app.command("validate", help="Validate a manifest without running it")(validate_cmd.validate)


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    config_path: Path | None = typer.Option(
        None, "--config", "-c", help="Config file (kind: Config YAML or pyproject.toml)"
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level: debug|info|warning|error"
    ),
    log_format: str | None = typer.Option(
        None, "--log-format", help="Log format: console|json|structured|rich"
    ),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable debug logging"),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    """stagegate - plan and apply stage graphs.

    Global flags are parsed here; the loaded config is stored on ``ctx.obj``
    for subcommands.
    """
    if version:
        console.print(f"[bold blue]stagegate[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        err_console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(2) from e

    logging_config = config.logging
    level = "DEBUG" if verbose else (log_level or logging_config.level).upper()
    configure_logging(
        level=level,  # type: ignore[arg-type]
        format=(log_format or logging_config.format).lower(),  # type: ignore[arg-type]
        output_file=logging_config.output_file,
        use_color=logging_config.use_color,
        include_timestamp=logging_config.include_timestamp,
        backtrace=logging_config.backtrace,
        diagnose=logging_config.diagnose,
    )

    if ctx.obj is None:
        ctx.obj = {}
    ctx.obj.update({"config": config, "verbose": verbose})


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
