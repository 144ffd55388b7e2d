"""JSON file artifact store: one document per identity under a directory.

Artifacts written by one process are visible to later runs, so a rebuild of
the same source revision reuses the stored artifact.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from stagegate.drivers._files import (
    filename_to_key,
    key_to_filename,
    list_keys,
    read_json,
    write_json,
)
from stagegate.kernel.domain.artifact import Artifact
from stagegate.kernel.logging import get_logger

logger = get_logger(__name__)


class FileArtifactStore:
    """Artifact store persisted as ``<directory>/<identity>.json``.

    Parameters
    ----------
    directory : str | Path
        Storage directory, created on first write
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def _path(self, identity: str) -> Path:
        return self.directory / key_to_filename(identity)

    async def aget(self, identity: str) -> Artifact | None:
        data = await read_json(self._path(identity))
        return Artifact.from_dict(data) if data is not None else None

    async def aput(self, artifact: Artifact) -> Artifact:
        async with self._lock:
            if existing := await self.aget(artifact.identity):
                return existing
            await write_json(self._path(artifact.identity), artifact.to_dict())
            logger.debug("Stored artifact '{identity}'", identity=artifact.identity)
            return artifact

    async def alist(self) -> list[str]:
        return sorted(filename_to_key(p.name) for p in list_keys(self.directory))
