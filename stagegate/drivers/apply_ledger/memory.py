"""In-memory apply ledger."""

from __future__ import annotations

from typing import Any


class InMemoryApplyLedger:
    """Remembers the outputs of successful applies for the life of the process."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], dict[str, Any]] = {}

    async def alookup(self, stage_id: str, fingerprint: str) -> dict[str, Any] | None:
        outputs = self._entries.get((stage_id, fingerprint))
        return dict(outputs) if outputs is not None else None

    async def arecord(self, stage_id: str, fingerprint: str, outputs: dict[str, Any]) -> None:
        self._entries[(stage_id, fingerprint)] = dict(outputs)

    def __len__(self) -> int:
        return len(self._entries)
