"""Port interface for run result persistence (backs ``status(run_id)``)."""

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from stagegate.kernel.domain.run import RunResult


@runtime_checkable
class RunStore(Protocol):
    """Storage of finished (or in-progress) run snapshots."""

    @abstractmethod
    async def asave(self, result: RunResult) -> None:
        """Insert or replace the snapshot for ``result.run_id``."""
        ...

    @abstractmethod
    async def aload(self, run_id: str) -> RunResult | None:
        """Return the snapshot for *run_id*, or None."""
        ...

    @abstractmethod
    async def alist(self) -> list[str]:
        """Return known run ids, oldest first."""
        ...
