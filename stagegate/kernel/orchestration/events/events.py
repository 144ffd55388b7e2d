"""Simple event data classes for the stagegate event system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event."""
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Run events
@dataclass(slots=True)
class RunStarted(Event):
    """A run has been planned and is about to dispatch its first level."""

    run_id: str
    total_levels: int
    total_stages: int
    environment: str | None = None

    def log_message(self) -> str:
        env = f" [{self.environment}]" if self.environment else ""
        return (
            f"Run '{self.run_id}'{env} started: "
            f"{self.total_stages} stages in {self.total_levels} levels"
        )


@dataclass(slots=True)
class RunCompleted(Event):
    """A run reached a terminal status."""

    run_id: str
    status: str
    duration_ms: float
    failed: tuple[str, ...] = ()

    def log_message(self) -> str:
        failed = f" (failed: {', '.join(self.failed)})" if self.failed else ""
        return (
            f"Run '{self.run_id}' {self.status} in {self.duration_ms / 1000:.2f}s{failed}"
        )


@dataclass(slots=True)
class LevelCompleted(Event):
    """Every stage in a level reached a terminal state."""

    level_index: int
    stages: tuple[str, ...]
    duration_ms: float

    def log_message(self) -> str:
        return (
            f"Level {self.level_index} completed ({len(self.stages)} stages) "
            f"in {self.duration_ms / 1000:.2f}s"
        )


# Stage events
@dataclass(slots=True)
class StageStarted(Event):
    """A stage's action has been dispatched."""

    name: str
    level_index: int
    kind: str
    dependencies: tuple[str, ...] = ()

    def log_message(self) -> str:
        deps = f" (deps: {', '.join(self.dependencies)})" if self.dependencies else ""
        return f"Stage '{self.name}' [{self.kind}] started in level {self.level_index}{deps}"


@dataclass(slots=True)
class StageCompleted(Event):
    """A stage succeeded (for services: its action finished and it became healthy)."""

    name: str
    level_index: int
    outputs: dict[str, Any]
    duration_ms: float
    reused: bool = False

    def log_message(self) -> str:
        reused = " (reused previous apply)" if self.reused else ""
        return f"Stage '{self.name}' succeeded in {self.duration_ms / 1000:.2f}s{reused}"


@dataclass(slots=True)
class StageFailed(Event):
    """A stage failed: its action raised or its service never became healthy."""

    name: str
    level_index: int
    error: Exception

    def log_message(self) -> str:
        return f"Stage '{self.name}' failed: {self.error}"


@dataclass(slots=True)
class StageSkipped(Event):
    """A stage was never executed.

    Attributes
    ----------
    name : str
        Stage id
    reason : str
        Why it was skipped
    origin : str | None
        Stage whose failure caused the skip, when there is one
    """

    name: str
    reason: str
    origin: str | None = None

    def log_message(self) -> str:
        return f"Stage '{self.name}' skipped: {self.reason}"


# Health events
@dataclass(slots=True)
class ServiceHealthChanged(Event):
    """A watched service moved to a new health state."""

    name: str
    state: str
    attempt: int
    max_attempts: int

    def log_message(self) -> str:
        return (
            f"Service '{self.name}' is {self.state} "
            f"(attempt {self.attempt}/{self.max_attempts})"
        )


@dataclass(slots=True)
class ProbeAttempted(Event):
    """One readiness probe attempt finished."""

    name: str
    attempt: int
    healthy: bool
    error: str | None = None

    def log_message(self) -> str:
        outcome = "ok" if self.healthy else (self.error or "not ready")
        return f"Probe '{self.name}' attempt {self.attempt}: {outcome}"


# Artifact events
@dataclass(slots=True)
class ArtifactPromoted(Event):
    """A build output was promoted (or an existing artifact was reused)."""

    identity: str
    producer: str
    reused: bool = False

    def log_message(self) -> str:
        verb = "reused" if self.reused else "promoted"
        return f"Artifact '{self.identity}' {verb} (producer: {self.producer})"
