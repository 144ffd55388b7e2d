"""Port interface for idempotent apply.

The ledger remembers the outputs of successful stage applications keyed by
stage id and input fingerprint, so re-applying an unchanged stage can skip
its external action.
"""

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ApplyLedger(Protocol):
    """Outputs of previous successful applies."""

    @abstractmethod
    async def alookup(self, stage_id: str, fingerprint: str) -> dict[str, Any] | None:
        """Return outputs recorded for this exact fingerprint, or None."""
        ...

    @abstractmethod
    async def arecord(self, stage_id: str, fingerprint: str, outputs: dict[str, Any]) -> None:
        """Record outputs of a successful apply."""
        ...
