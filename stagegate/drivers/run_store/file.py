"""JSON file run store backing ``stagegate status`` across processes."""

from __future__ import annotations

from pathlib import Path

from stagegate.drivers._files import (
    filename_to_key,
    key_to_filename,
    list_keys,
    read_json,
    write_json,
)
from stagegate.kernel.domain.run import RunResult


class FileRunStore:
    """Run snapshots persisted as ``<directory>/<run_id>.json``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, run_id: str) -> Path:
        return self.directory / key_to_filename(run_id)

    async def asave(self, result: RunResult) -> None:
        await write_json(self._path(result.run_id), result.model_dump())

    async def aload(self, run_id: str) -> RunResult | None:
        data = await read_json(self._path(run_id))
        return RunResult.model_validate(data) if data is not None else None

    async def alist(self) -> list[str]:
        return [filename_to_key(p.name) for p in list_keys(self.directory)]
