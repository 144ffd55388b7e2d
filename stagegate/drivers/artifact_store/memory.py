"""In-memory artifact store (default for tests and single-process runs)."""

from __future__ import annotations

import asyncio

from stagegate.kernel.domain.artifact import Artifact


class InMemoryArtifactStore:
    """Dict-backed artifact store. Never overwrites an existing identity."""

    def __init__(self) -> None:
        self._artifacts: dict[str, Artifact] = {}
        self._lock = asyncio.Lock()

    async def aget(self, identity: str) -> Artifact | None:
        return self._artifacts.get(identity)

    async def aput(self, artifact: Artifact) -> Artifact:
        async with self._lock:
            return self._artifacts.setdefault(artifact.identity, artifact)

    async def alist(self) -> list[str]:
        return sorted(self._artifacts)

    def __len__(self) -> int:
        return len(self._artifacts)
