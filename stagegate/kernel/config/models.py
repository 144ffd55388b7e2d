"""Configuration data models for stagegate."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from stagegate.kernel.exceptions import ValidationError
from stagegate.kernel.orchestration.models import OrchestratorConfig

DEFAULT_STATE_DIR = ".stagegate"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for stagegate.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, rich)
    output_file : str | None, default=None
        Optional file path to write JSON logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    backtrace : bool, default=True
        Extended tracebacks
    diagnose : bool, default=False
        Show variable values in tracebacks

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.stagegate.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides:

    ```bash
    export STAGEGATE_LOG_LEVEL=DEBUG
    export STAGEGATE_LOG_FORMAT=json
    ```
    """

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    backtrace: bool = True
    diagnose: bool = False

    def __post_init__(self) -> None:
        if self.level not in ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValidationError("logging.level", "unknown log level", self.level)
        if self.format not in ("console", "json", "structured", "rich"):
            raise ValidationError("logging.format", "unknown log format", self.format)


@dataclass(frozen=True, slots=True)
class StageGateConfig:
    """Complete stagegate configuration.

    Attributes
    ----------
    logging : LoggingConfig
        Logging settings
    orchestrator : OrchestratorConfig
        Concurrency limit, default stage timeout and default probe budget
    state_dir : str
        Directory holding the file artifact store, apply ledger and run store
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    state_dir: str = DEFAULT_STATE_DIR

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    @property
    def artifacts_dir(self) -> Path:
        return self.state_path / "artifacts"

    @property
    def ledger_dir(self) -> Path:
        return self.state_path / "ledger"

    @property
    def runs_dir(self) -> Path:
        return self.state_path / "runs"
