"""Ports: protocols for the collaborators the kernel drives but does not implement."""

from stagegate.kernel.ports.action import StageAction
from stagegate.kernel.ports.apply_ledger import ApplyLedger
from stagegate.kernel.ports.artifact_store import ArtifactStore
from stagegate.kernel.ports.observer_manager import Observer, ObserverManager
from stagegate.kernel.ports.probe import Probe
from stagegate.kernel.ports.run_store import RunStore

__all__ = [
    "ApplyLedger",
    "ArtifactStore",
    "Observer",
    "ObserverManager",
    "Probe",
    "RunStore",
    "StageAction",
]
