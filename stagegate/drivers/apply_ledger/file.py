"""JSON file apply ledger: one document per stage, keyed by fingerprint."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from stagegate.drivers._files import key_to_filename, read_json, write_json


class FileApplyLedger:
    """Apply ledger persisted as ``<directory>/<stage_id>.json``.

    Each document maps input fingerprints to the outputs recorded for them,
    so re-applying an unchanged stage in a later process is a no-op.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def _path(self, stage_id: str) -> Path:
        return self.directory / key_to_filename(stage_id)

    async def alookup(self, stage_id: str, fingerprint: str) -> dict[str, Any] | None:
        entries = await read_json(self._path(stage_id)) or {}
        outputs = entries.get(fingerprint)
        return dict(outputs) if outputs is not None else None

    async def arecord(self, stage_id: str, fingerprint: str, outputs: dict[str, Any]) -> None:
        async with self._lock:
            path = self._path(stage_id)
            entries = await read_json(path) or {}
            entries[fingerprint] = dict(outputs)
            await write_json(path, entries)
