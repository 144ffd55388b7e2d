"""Duration parsing for manifests and configuration.

Durations are numbers (seconds) or strings with an ``ms``, ``s``, ``m`` or
``h`` suffix.
"""

import re

from stagegate.kernel.exceptions import ValidationError

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | int | float, field: str = "duration") -> float:
    """Return *value* in seconds.

    Examples
    --------
    >>> parse_duration("10s")
    10.0
    >>> parse_duration("250ms")
    0.25
    >>> parse_duration(5)
    5.0

    Raises
    ------
    ValidationError
        If *value* is negative or not a recognized duration
    """
    if isinstance(value, bool):
        raise ValidationError(field, "expected a duration", value)
    if isinstance(value, int | float):
        if value < 0:
            raise ValidationError(field, "must be >= 0", value)
        return float(value)
    if isinstance(value, str) and (match := _DURATION_PATTERN.match(value)):
        amount, unit = match.groups()
        return float(amount) * _UNIT_SECONDS[unit or "s"]
    raise ValidationError(field, "expected seconds or a number with ms/s/m/h suffix", value)
