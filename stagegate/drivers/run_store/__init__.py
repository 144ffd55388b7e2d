from stagegate.drivers.run_store.file import FileRunStore
from stagegate.drivers.run_store.memory import InMemoryRunStore

__all__ = ["FileRunStore", "InMemoryRunStore"]
