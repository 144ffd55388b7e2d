"""Domain models: stages, the stage graph, artifacts and run records."""

from stagegate.kernel.domain.artifact import Artifact
from stagegate.kernel.domain.graph import StageGraph
from stagegate.kernel.domain.run import (
    ErrorInfo,
    HealthState,
    RunResult,
    RunStatus,
    StageOutcome,
    StageRecord,
    StageState,
)
from stagegate.kernel.domain.stage import (
    ArtifactRef,
    ServiceSpec,
    StageKind,
    StageOutputRef,
    StageSpec,
    VariableRef,
    parse_reference,
    substitute,
    substitute_value,
)

__all__ = [
    "Artifact",
    "ArtifactRef",
    "ErrorInfo",
    "HealthState",
    "RunResult",
    "RunStatus",
    "ServiceSpec",
    "StageGraph",
    "StageKind",
    "StageOutcome",
    "StageOutputRef",
    "StageRecord",
    "StageSpec",
    "StageState",
    "VariableRef",
    "parse_reference",
    "substitute",
    "substitute_value",
]
