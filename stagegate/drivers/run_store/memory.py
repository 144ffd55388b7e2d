"""In-memory run store."""

from __future__ import annotations

from stagegate.kernel.domain.run import RunResult


class InMemoryRunStore:
    """Keeps run snapshots in insertion order."""

    def __init__(self) -> None:
        self._runs: dict[str, RunResult] = {}

    async def asave(self, result: RunResult) -> None:
        self._runs[result.run_id] = result

    async def aload(self, run_id: str) -> RunResult | None:
        return self._runs.get(run_id)

    async def alist(self) -> list[str]:
        return list(self._runs)
