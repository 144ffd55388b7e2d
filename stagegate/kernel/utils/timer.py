"""Shared timing helper for stage, level and run durations."""

import time


class Timer:
    """Lightweight timer that tracks elapsed milliseconds.

    Examples
    --------
    >>> t = Timer()
    >>> t.duration_ms >= 0
    True
    """

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        """Elapsed time in milliseconds since the timer started."""
        return (time.perf_counter() - self._start) * 1000

    @property
    def duration_s(self) -> float:
        """Elapsed time in seconds since the timer started."""
        return time.perf_counter() - self._start
