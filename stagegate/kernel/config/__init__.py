"""Configuration loading and management for stagegate."""

from stagegate.kernel.config.models import LoggingConfig, StageGateConfig


def __getattr__(name: str) -> object:
    """Lazy imports for loader symbols (they live in stagegate.compiler.config_loader)."""
    _loader_names = {"clear_config_cache", "get_default_config", "load_config"}
    if name in _loader_names:
        from stagegate.compiler import config_loader

        return getattr(config_loader, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["LoggingConfig", "StageGateConfig"]
