"""Orchestrator components: one responsibility each, composed by the Orchestrator."""

from stagegate.kernel.orchestration.components.artifact_promoter import (
    ArtifactPromoter,
    Promotion,
)
from stagegate.kernel.orchestration.components.health_gate import HealthGate, HealthVerdict
from stagegate.kernel.orchestration.components.input_resolver import InputResolver
from stagegate.kernel.orchestration.components.stage_executor import StageExecutor, fingerprint

__all__ = [
    "ArtifactPromoter",
    "HealthGate",
    "HealthVerdict",
    "InputResolver",
    "Promotion",
    "StageExecutor",
    "fingerprint",
]
