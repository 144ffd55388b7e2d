"""Compiler: declarative manifests and configuration files into kernel objects.

The kernel never touches file formats directly; this package parses YAML and
TOML, resolves ``module:attribute`` references and chooses drivers.
"""

from stagegate.compiler.config_loader import (
    ConfigLoader,
    clear_config_cache,
    get_default_config,
    load_config,
)
from stagegate.compiler.durations import parse_duration
from stagegate.compiler.references import resolve_callable, resolve_reference
from stagegate.compiler.yaml_builder import Pipeline, YamlPipelineBuilder

__all__ = [
    "ConfigLoader",
    "Pipeline",
    "YamlPipelineBuilder",
    "clear_config_cache",
    "get_default_config",
    "load_config",
    "parse_duration",
    "resolve_callable",
    "resolve_reference",
]
