"""Port interface for readiness probes.

A probe is any callable returning a truthy value when the service is usable.
Coroutine functions are awaited; plain functions run in a worker thread.
Raising counts as a failed attempt.
"""

from abc import abstractmethod
from typing import Protocol, runtime_checkable


@runtime_checkable
class Probe(Protocol):
    """Readiness check for a running service."""

    @abstractmethod
    async def __call__(self) -> bool:
        """Return True when the service is ready."""
        ...
