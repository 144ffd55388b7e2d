"""Orchestration: the run driver, its components, models and events.

The Orchestrator is loaded lazily so that ports can import the event types
without pulling in the whole driver.
"""

from stagegate.kernel.orchestration.models import OrchestratorConfig, StageContext


def __getattr__(name: str) -> object:
    if name in {"ExecutionPlan", "Orchestrator"}:
        from stagegate.kernel.orchestration import orchestrator

        return getattr(orchestrator, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["ExecutionPlan", "Orchestrator", "OrchestratorConfig", "StageContext"]
