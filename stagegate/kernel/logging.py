"""Centralized logging configuration for stagegate using Loguru.

Provides consistent logging across the orchestrator with support for:
- Multiple output formats (console, JSON, structured, rich)
- Environment-based defaults (``STAGEGATE_LOG_LEVEL``, ``STAGEGATE_LOG_FORMAT``)
- Run-scoped context via a ``run_id`` ContextVar
- Idempotent configuration

Examples
--------
Basic usage:

>>> from stagegate.kernel.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Run started", run_id="r-123")

Configure logging globally::

    from stagegate.kernel.logging import configure_logging
    configure_logging(level="DEBUG", format="json")
"""

import contextvars
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich"]

_CURRENT_CONFIG: dict | None = None
_HANDLER_IDS: list[int] = []

# Run id of the orchestration currently executing in this async context
current_run_id: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")


def _inject_run_id(record: dict) -> None:
    record["extra"].setdefault("run_id", current_run_id.get())


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    backtrace: bool = True,
    diagnose: bool = False,
) -> None:
    """Configure global logging for stagegate.

    Calling this repeatedly with the same arguments is a no-op.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum log level to output
    format : LogFormat, default="structured"
        Output format:
        - "console": plain single-line output
        - "json": serialized records for log aggregation
        - "structured": colored loguru format with module and run id
        - "rich": ``rich.logging.RichHandler`` console output
    output_file : str | Path | None, default=None
        Optional JSON log file (rotated at 10 MB, kept for one week)
    use_color : bool, default=True
        Use ANSI colors in structured format (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    force_reconfigure : bool, default=False
        Reconfigure even when the settings are unchanged
    backtrace : bool, default=True
        Extended tracebacks for errors
    diagnose : bool, default=False
        Show variable values in tracebacks (leaks bindings; keep off in CI)
    """
    global _CURRENT_CONFIG

    current_config = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }

    if not force_reconfigure and current_config == _CURRENT_CONFIG:
        return

    # Only remove handlers we added, pytest and embedding apps keep theirs
    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()

    logger.configure(patcher=_inject_run_id)

    if format == "rich":
        rich_handler = RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            markup=False,
            show_time=include_timestamp,
            show_level=True,
            show_path=True,
        )
        handler_id = logger.add(
            sink=rich_handler,
            level=level,
            format="{message}",
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    elif format == "json":
        handler_id = logger.add(
            sink=sys.stderr,
            level=level,
            serialize=True,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    elif format == "structured":
        timestamp_fmt = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if include_timestamp else ""
        colorize = use_color and sys.stderr.isatty()
        color_level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
        structured_format = (
            f"{timestamp_fmt}[{color_level}]"
            "<cyan>{extra[run_id]}</cyan> {name}:{line} | <level>{message}</level>"
        )
        handler_id = logger.add(
            sink=sys.stderr,
            level=level,
            format=structured_format,
            colorize=colorize,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    else:  # console
        timestamp_fmt = "{time:YYYY-MM-DD HH:mm:ss} " if include_timestamp else ""
        console_format = f"{timestamp_fmt}{{level: <8}} | {{name}} | {{message}}"
        handler_id = logger.add(
            sink=sys.stderr,
            level=level,
            format=console_format,
            colorize=False,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    if output_file:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        handler_id = logger.add(
            sink=output_path,
            level=level,
            serialize=True,
            rotation="10 MB",
            retention="1 week",
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    _CURRENT_CONFIG = current_config


@lru_cache(maxsize=256)
def get_logger(name: str) -> "Logger":
    """Get a logger bound with the given module name (cached).

    Parameters
    ----------
    name : str
        Logger name, typically ``__name__`` of the calling module

    Returns
    -------
    loguru.Logger
        Logger bound with ``module=name``
    """
    _ensure_configured()
    return logger.bind(module=name)


def set_run_id(run_id: str) -> contextvars.Token[str]:
    """Set the run id included in log records for the current context."""
    return current_run_id.set(run_id)


def reset_run_id(token: contextvars.Token[str]) -> None:
    """Restore the run id that was active before :func:`set_run_id`."""
    current_run_id.reset(token)


def _ensure_configured() -> None:
    """Apply environment-driven defaults if nobody called configure_logging()."""
    if _CURRENT_CONFIG is None:
        level = os.getenv("STAGEGATE_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("STAGEGATE_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=format_type)  # type: ignore[arg-type]
