"""Stage action drivers."""

from stagegate.drivers.actions.command import CommandAction, parse_outputs

__all__ = ["CommandAction", "parse_outputs"]
