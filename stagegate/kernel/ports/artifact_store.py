"""Port interface for artifact persistence.

The artifact store is the only storage the promoter needs: look an identity
up, and write a new artifact under an identity that is not yet taken.
Retention and garbage collection are the store's concern, not the core's.
"""

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from stagegate.kernel.domain.artifact import Artifact


@runtime_checkable
class ArtifactStore(Protocol):
    """Keyed storage of immutable artifacts."""

    @abstractmethod
    async def aget(self, identity: str) -> Artifact | None:
        """Return the artifact stored under *identity*, or None."""
        ...

    @abstractmethod
    async def aput(self, artifact: Artifact) -> Artifact:
        """Store *artifact* unless its identity exists; return the stored artifact.

        Implementations must never overwrite an existing identity.
        """
        ...

    @abstractmethod
    async def alist(self) -> list[str]:
        """Return all stored identities."""
        ...
