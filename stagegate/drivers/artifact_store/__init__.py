from stagegate.drivers.artifact_store.file import FileArtifactStore
from stagegate.drivers.artifact_store.memory import InMemoryArtifactStore

__all__ = ["FileArtifactStore", "InMemoryArtifactStore"]
