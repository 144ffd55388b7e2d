"""stagegate - dependency-graph orchestration with health-gated readiness.

Declare stages (provision, build, test, verify), wire their outputs into each
other's inputs, and apply the graph: independent stages run concurrently,
services are released to dependents only once healthy, build artifacts are
promoted once per identity, and a failure skips only the stages that depend
on it.
"""

from typing import TYPE_CHECKING, Any

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("stagegate")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts

from stagegate.compiler import YamlPipelineBuilder, load_config
from stagegate.kernel.domain import (
    Artifact,
    RunResult,
    RunStatus,
    ServiceSpec,
    StageGraph,
    StageKind,
    StageSpec,
    StageState,
)
from stagegate.kernel.exceptions import ExitCode, StageGateError
from stagegate.kernel.orchestration import OrchestratorConfig, StageContext
from stagegate.kernel.orchestration.orchestrator import ExecutionPlan, Orchestrator

if TYPE_CHECKING:
    from stagegate.drivers.artifact_store import FileArtifactStore, InMemoryArtifactStore


def __getattr__(name: str) -> Any:
    """Lazy import for drivers.

    Raises
    ------
    AttributeError
        If the requested attribute does not exist
    """
    if name == "InMemoryArtifactStore":
        from stagegate.drivers.artifact_store import InMemoryArtifactStore as _InMemoryStore

        return _InMemoryStore
    if name == "FileArtifactStore":
        from stagegate.drivers.artifact_store import FileArtifactStore as _FileStore

        return _FileStore
    raise AttributeError(f"module 'stagegate' has no attribute '{name}'")


__all__ = [
    "Artifact",
    "ExecutionPlan",
    "ExitCode",
    "FileArtifactStore",
    "InMemoryArtifactStore",
    "Orchestrator",
    "OrchestratorConfig",
    "RunResult",
    "RunStatus",
    "ServiceSpec",
    "StageContext",
    "StageGateError",
    "StageGraph",
    "StageKind",
    "StageSpec",
    "StageState",
    "YamlPipelineBuilder",
    "__version__",
    "load_config",
]
