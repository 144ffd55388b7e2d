"""Event system for stagegate.

- events.py: lifecycle event data classes (just data, no behavior)
- observers.py: observer implementations
"""

from .events import (
    ArtifactPromoted,
    Event,
    LevelCompleted,
    ProbeAttempted,
    RunCompleted,
    RunStarted,
    ServiceHealthChanged,
    StageCompleted,
    StageFailed,
    StageSkipped,
    StageStarted,
)
from .observers import LoggingObserver

# Event taxonomy - grouped event types for observer filtering
STAGE_LIFECYCLE_EVENTS = (StageStarted, StageCompleted, StageFailed, StageSkipped)
HEALTH_EVENTS = (ServiceHealthChanged, ProbeAttempted)
RUN_EVENTS = (RunStarted, LevelCompleted, RunCompleted)
ARTIFACT_EVENTS = (ArtifactPromoted,)

ALL_EVENTS = STAGE_LIFECYCLE_EVENTS + HEALTH_EVENTS + RUN_EVENTS + ARTIFACT_EVENTS

__all__ = [
    "ALL_EVENTS",
    "ARTIFACT_EVENTS",
    "HEALTH_EVENTS",
    "RUN_EVENTS",
    "STAGE_LIFECYCLE_EVENTS",
    "ArtifactPromoted",
    "Event",
    "LevelCompleted",
    "LoggingObserver",
    "ProbeAttempted",
    "RunCompleted",
    "RunStarted",
    "ServiceHealthChanged",
    "StageCompleted",
    "StageFailed",
    "StageSkipped",
    "StageStarted",
]
