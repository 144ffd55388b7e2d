"""Configuration loader for stagegate.

Parses configuration into kernel config models. Supports two config sources:

1. **kind: Config YAML**: loaded via explicit path, ``STAGEGATE_CONFIG_PATH``
   or ``stagegate.yaml`` in the working directory.
2. **pyproject.toml [tool.stagegate]**: auto-discovery fallback.

When neither exists the defaults are used. ``${VAR}`` and ``${VAR:default}``
placeholders are substituted from the environment, and
``STAGEGATE_LOG_LEVEL``, ``STAGEGATE_LOG_FORMAT`` and ``STAGEGATE_STATE_DIR``
override file values.
"""

from __future__ import annotations

import os
import re
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from stagegate.compiler.durations import parse_duration
from stagegate.kernel.config.models import DEFAULT_STATE_DIR, LoggingConfig, StageGateConfig
from stagegate.kernel.exceptions import ConfigurationError, ValidationError
from stagegate.kernel.logging import get_logger
from stagegate.kernel.orchestration.models import OrchestratorConfig

logger = get_logger(__name__)

CONFIG_ENV_VAR = "STAGEGATE_CONFIG_PATH"
DEFAULT_CONFIG_FILE = "stagegate.yaml"

# ${VAR} or ${VAR:default}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off"})


def _parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    raise ConfigurationError(field, f"invalid boolean value {value!r}")


def substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ``${VAR}`` / ``${VAR:default}`` from the environment.

    Unset variables without a default keep their placeholder.

    Examples
    --------
    >>> substitute_env_vars("${STAGEGATE_DOCTEST_UNSET:fallback}")
    'fallback'
    """
    if isinstance(data, str):

        def replacer(match: re.Match[str]) -> str:
            name, default = match.group(1), match.group(2)
            value = os.environ.get(name)
            if value is not None:
                return value
            if default is not None:
                return default
            logger.debug("Environment variable ${{{name}}} not set, keeping placeholder", name=name)
            return match.group(0)

        return ENV_VAR_PATTERN.sub(replacer, data)
    if isinstance(data, dict):
        return {key: substitute_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [substitute_env_vars(item) for item in data]
    return data


class ConfigLoader:
    """Loads and processes stagegate configuration files."""

    def find_config_file(self, path: str | Path | None = None) -> Path | None:
        """Find the configuration file.

        Discovery order:
        1. Explicit path argument
        2. ``STAGEGATE_CONFIG_PATH`` env var
        3. ``stagegate.yaml`` in CWD
        4. ``pyproject.toml`` with ``[tool.stagegate]`` in CWD or a parent directory

        Raises
        ------
        ConfigurationError
            If an explicit path does not exist
        """
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigurationError("config", f"file not found: {config_path}")
            return config_path

        if env_path := os.getenv(CONFIG_ENV_VAR):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from {var}: {path}", var=CONFIG_ENV_VAR, path=env_path)
                return config_path
            logger.warning(
                "{var} set but file not found: {path}", var=CONFIG_ENV_VAR, path=env_path
            )

        if Path(DEFAULT_CONFIG_FILE).exists():
            return Path(DEFAULT_CONFIG_FILE)

        current = Path.cwd()
        while True:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    if "stagegate" in tomllib.load(f).get("tool", {}):
                        return pyproject
            if current == current.parent:
                return None
            current = current.parent

    def load(self, config_path: Path | None) -> StageGateConfig:
        """Load *config_path* (or defaults when None) and apply env overrides."""
        if config_path is None:
            return self.parse({})

        logger.debug("Loading configuration from {path}", path=config_path)
        if config_path.suffix in (".yaml", ".yml"):
            data = self._load_yaml(config_path)
        else:
            data = self._load_toml(config_path)
        return self.parse(substitute_env_vars(data))

    def _load_yaml(self, config_path: Path) -> dict[str, Any]:
        with config_path.open("r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError("config", f"invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "config", f"expected a mapping, got {type(data).__name__} in {config_path}"
            )
        if (kind := data.get("kind")) != "Config":
            raise ConfigurationError(
                "config",
                f"YAML config must use 'kind: Config', got 'kind: {kind}' in {config_path.name}",
            )
        spec = data.get("spec") or {}
        if not isinstance(spec, dict):
            raise ConfigurationError("config", "'spec' in kind: Config must be a mapping")
        return spec

    def _load_toml(self, config_path: Path) -> dict[str, Any]:
        with config_path.open("rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError("config", f"invalid TOML in {config_path}: {e}") from e
        if "tool" in data and "stagegate" in data["tool"]:
            return data["tool"]["stagegate"]
        if config_path.name == "pyproject.toml":
            logger.warning("No [tool.stagegate] in {path}, using defaults", path=config_path)
            return {}
        return data

    def parse(self, data: dict[str, Any]) -> StageGateConfig:
        """Build a StageGateConfig from raw (format-agnostic) data.

        Raises
        ------
        ConfigurationError
            If a section has an invalid value
        """
        try:
            logging_config = self._parse_logging(data.get("logging") or {})
            orchestrator = self._parse_orchestrator(data.get("orchestrator") or {})
        except ValidationError as e:
            raise ConfigurationError(e.field, e.constraint) from e
        except (TypeError, ValueError) as e:
            raise ConfigurationError("orchestrator", str(e)) from e

        state_dir = os.getenv("STAGEGATE_STATE_DIR") or data.get("state_dir") or DEFAULT_STATE_DIR
        return StageGateConfig(
            logging=logging_config, orchestrator=orchestrator, state_dir=str(state_dir)
        )

    def _parse_logging(self, data: dict[str, Any]) -> LoggingConfig:
        level = str(data.get("level", "INFO")).upper()
        format_type = str(data.get("format", "structured")).lower()

        if env_level := os.getenv("STAGEGATE_LOG_LEVEL"):
            level = env_level.upper()
            logger.debug("Overriding log level from env: {}", level)
        if env_format := os.getenv("STAGEGATE_LOG_FORMAT"):
            format_type = env_format.lower()
            logger.debug("Overriding log format from env: {}", format_type)

        return LoggingConfig(
            level=level,  # type: ignore[arg-type]
            format=format_type,  # type: ignore[arg-type]
            output_file=data.get("output_file"),
            use_color=_parse_bool(data.get("use_color", True), "logging.use_color"),
            include_timestamp=_parse_bool(
                data.get("include_timestamp", True), "logging.include_timestamp"
            ),
            backtrace=_parse_bool(data.get("backtrace", True), "logging.backtrace"),
            diagnose=_parse_bool(data.get("diagnose", False), "logging.diagnose"),
        )

    def _parse_orchestrator(self, data: dict[str, Any]) -> OrchestratorConfig:
        defaults = OrchestratorConfig()
        timeout = data.get("default_stage_timeout")
        return OrchestratorConfig(
            max_concurrent_stages=int(
                data.get("max_concurrent_stages", defaults.max_concurrent_stages)
            ),
            default_stage_timeout=(
                parse_duration(timeout, "orchestrator.default_stage_timeout")
                if timeout is not None
                else None
            ),
            probe_interval=parse_duration(
                data.get("probe_interval", defaults.probe_interval), "orchestrator.probe_interval"
            ),
            probe_timeout=parse_duration(
                data.get("probe_timeout", defaults.probe_timeout), "orchestrator.probe_timeout"
            ),
            probe_max_attempts=int(data.get("probe_max_attempts", defaults.probe_max_attempts)),
        )


@lru_cache(maxsize=32)
def _load_cached(path_str: str | None) -> StageGateConfig:
    return ConfigLoader().load(Path(path_str) if path_str else None)


def load_config(path: str | Path | None = None) -> StageGateConfig:
    """Load configuration using the discovery order of :class:`ConfigLoader`.

    Parameters
    ----------
    path : str | Path | None
        Explicit config file; discovered when omitted

    Returns
    -------
    StageGateConfig
        Parsed configuration with environment substitutions applied
    """
    config_path = ConfigLoader().find_config_file(path)
    return _load_cached(str(config_path.absolute()) if config_path else None)


def get_default_config() -> StageGateConfig:
    """Configuration with defaults and environment overrides only."""
    return ConfigLoader().parse({})


def clear_config_cache() -> None:
    """Forget cached configurations (used by tests that change the environment)."""
    _load_cached.cache_clear()
