"""Artifact promoter: build-once, content-identified artifact promotion.

``promote`` is idempotent per identity. If the identity already exists the
stored artifact is returned and the producer is not called. Concurrent
promotions of the same identity are serialized by a per-identity lock, so the
producer runs at most once per identity (single-flight). Different identities
promote in parallel.
"""

import asyncio
import weakref
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stagegate.kernel.ports.artifact_store import ArtifactStore
    from stagegate.kernel.ports.observer_manager import ObserverManager

from stagegate.kernel.domain.artifact import Artifact
from stagegate.kernel.exceptions import ArtifactNotFoundError, ValidationError
from stagegate.kernel.logging import get_logger
from stagegate.kernel.orchestration.events import ArtifactPromoted
from stagegate.kernel.utils.callables import call_maybe_async

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Promotion:
    """Result of a promotion: the artifact and whether this call created it."""

    artifact: Artifact
    created: bool


class ArtifactPromoter:
    """Assigns identities to build outputs and serves them read-only.

    Parameters
    ----------
    store : ArtifactStore | None
        Backing store; an in-memory store is used when omitted
    observer_manager : ObserverManager | None
        Receives ArtifactPromoted events
    """

    def __init__(
        self,
        store: "ArtifactStore | None" = None,
        observer_manager: "ObserverManager | None" = None,
    ) -> None:
        if store is None:
            from stagegate.drivers.artifact_store import (
                InMemoryArtifactStore,  # lazy: kernel does not import drivers at module level
            )

            store = InMemoryArtifactStore()
        self.store = store
        self._observer_manager = observer_manager
        # Entries vanish once no promotion holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[identity] = lock
        return lock

    @property
    def pending_locks(self) -> int:
        """Identities with a promotion currently holding or awaiting their lock."""
        return len(self._locks)

    async def promote_detailed(
        self,
        identity: str,
        producer: Callable[[], Any],
        *,
        producer_stage: str = "-",
    ) -> Promotion:
        """Promote and report whether the producer actually ran.

        Parameters
        ----------
        identity : str
            Artifact identity (same source revision => same identity)
        producer : Callable[[], Any]
            Sync or async zero-argument callable returning the payload mapping
        producer_stage : str
            Id of the build stage on whose behalf the artifact is produced

        Returns
        -------
        Promotion
            The stored artifact and ``created=True`` only for the call that built it

        Raises
        ------
        ValidationError
            If *identity* is empty or the producer returns a non-mapping payload
        """
        if not identity or not identity.strip():
            raise ValidationError("identity", "must be a non-empty string", identity)

        if existing := await self.store.aget(identity):
            await self._notify(existing, reused=True)
            return Promotion(existing, created=False)

        lock = self._lock_for(identity)
        async with lock:
            # Another task may have finished the build while we waited
            if existing := await self.store.aget(identity):
                await self._notify(existing, reused=True)
                return Promotion(existing, created=False)

            logger.info(
                "Building artifact '{identity}' (stage '{stage}')",
                identity=identity,
                stage=producer_stage,
            )
            payload = await call_maybe_async(producer)
            if payload is None:
                payload = {}
            if not isinstance(payload, Mapping):
                raise ValidationError(
                    "payload", "artifact producer must return a mapping", type(payload).__name__
                )

            stored = await self.store.aput(
                Artifact(identity=identity, producer=producer_stage, payload=payload)
            )
            await self._notify(stored, reused=False)
            return Promotion(stored, created=True)

    async def promote(
        self,
        identity: str,
        producer: Callable[[], Any],
        *,
        producer_stage: str = "-",
    ) -> Artifact:
        """Return the artifact for *identity*, invoking *producer* only if it does not exist yet."""
        promotion = await self.promote_detailed(identity, producer, producer_stage=producer_stage)
        return promotion.artifact

    async def fetch(self, identity: str) -> Artifact:
        """Return a promoted artifact.

        Raises
        ------
        ArtifactNotFoundError
            If no promotion has happened for *identity*
        """
        artifact = await self.store.aget(identity)
        if artifact is None:
            raise ArtifactNotFoundError(identity)
        return artifact

    async def exists(self, identity: str) -> bool:
        return await self.store.aget(identity) is not None

    async def _notify(self, artifact: Artifact, *, reused: bool) -> None:
        if self._observer_manager is not None:
            await self._observer_manager.notify(
                ArtifactPromoted(artifact.identity, artifact.producer, reused=reused)
            )
