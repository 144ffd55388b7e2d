"""Run state: per-stage execution records and the serializable run result.

A run owns one StageRecord per stage in its graph. Records are mutated only
through their transition methods, each guarded by the record's own lock, and
are never shared between runs. ``RunResult`` is the immutable snapshot handed
back to callers and persisted by run stores.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stagegate.kernel.domain.stage import StageKind
from stagegate.kernel.exceptions import (
    DependencyFailedError,
    ExitCode,
    HealthCheckTimeoutError,
    StageExecutionError,
    StageGateError,
)


class StageState(StrEnum):
    """Execution state of a stage within one run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STAGE_STATES


_TERMINAL_STAGE_STATES = frozenset({StageState.SUCCEEDED, StageState.FAILED, StageState.SKIPPED})


class HealthState(StrEnum):
    """Lifecycle of a service instance watched by the health gate."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (HealthState.HEALTHY, HealthState.FAILED)


HEALTH_TRANSITIONS: MappingProxyType[HealthState, frozenset[HealthState]] = MappingProxyType({
    HealthState.UNKNOWN: frozenset({HealthState.STARTING}),
    HealthState.STARTING: frozenset({HealthState.HEALTHY, HealthState.FAILED}),
    HealthState.HEALTHY: frozenset(),
    HealthState.FAILED: frozenset(),
})

STAGE_TRANSITIONS: MappingProxyType[StageState, frozenset[StageState]] = MappingProxyType({
    StageState.PENDING: frozenset({StageState.RUNNING, StageState.SKIPPED}),
    StageState.RUNNING: frozenset({StageState.SUCCEEDED, StageState.FAILED, StageState.SKIPPED}),
    StageState.SUCCEEDED: frozenset(),
    StageState.FAILED: frozenset(),
    StageState.SKIPPED: frozenset(),
})


class RunStatus(StrEnum):
    """Overall status of a run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INVALID = "invalid"


class InvalidTransitionError(StageGateError):
    """Raised when a record is asked to leave a terminal state."""

    def __init__(self, stage_id: str, current: str, target: str) -> None:
        self.stage_id = stage_id
        super().__init__(f"Stage '{stage_id}': illegal transition {current} -> {target}")


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class StageRecord:
    """Mutable execution record for one stage in one run."""

    stage_id: str
    kind: StageKind
    is_service: bool = False
    state: StageState = StageState.PENDING
    health: HealthState | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    outputs: MappingProxyType[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    error: StageGateError | None = None
    reused: bool = False
    probe_attempts: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.is_service and self.health is None:
            self.health = HealthState.UNKNOWN

    def _transition(self, target: StageState) -> None:
        if target not in STAGE_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.stage_id, self.state.value, target.value)
        self.state = target

    def mark_running(self) -> None:
        with self._lock:
            self._transition(StageState.RUNNING)
            self.started_at = _now()

    def mark_succeeded(self, outputs: dict[str, Any], *, reused: bool = False) -> None:
        """Publish outputs and succeed; outputs become visible to dependents only now."""
        with self._lock:
            self._transition(StageState.SUCCEEDED)
            self.outputs = MappingProxyType(dict(outputs))
            self.reused = reused
            self.ended_at = _now()

    def mark_failed(self, error: StageGateError) -> None:
        with self._lock:
            self._transition(StageState.FAILED)
            self.error = error
            self.ended_at = _now()

    def mark_skipped(self, cause: StageGateError) -> None:
        with self._lock:
            self._transition(StageState.SKIPPED)
            self.error = cause
            self.ended_at = self.ended_at or _now()

    def set_health(self, target: HealthState) -> None:
        """Advance the service state machine; terminal health states are final."""
        with self._lock:
            current = self.health or HealthState.UNKNOWN
            if target not in HEALTH_TRANSITIONS[current]:
                raise InvalidTransitionError(self.stage_id, current.value, target.value)
            self.health = target

    @property
    def is_ready(self) -> bool:
        """Succeeded, and Healthy when the stage is a service."""
        if self.state is not StageState.SUCCEEDED:
            return False
        return not self.is_service or self.health is HealthState.HEALTHY


# ============================================================================
# Serializable snapshot
# ============================================================================


class ErrorInfo(BaseModel):
    """Serializable description of a stage's failure or skip cause.

    ``cause_type`` names the underlying error wrapped by a StageExecutionError
    (for a skipped stage, the one wrapped by the originating failure), so a
    missing artifact can be told apart from a failing action.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    message: str
    origin_stage_id: str | None = None
    cause_type: str | None = None

    @classmethod
    def from_error(cls, error: StageGateError) -> ErrorInfo:
        origin = None
        root: BaseException = error
        if isinstance(error, DependencyFailedError):
            origin = error.origin_stage_id
            root = error.origin
        elif isinstance(error, StageExecutionError | HealthCheckTimeoutError):
            origin = error.stage_id
        cause = root.cause if isinstance(root, StageExecutionError) else None
        return cls(
            type=type(error).__name__,
            message=str(error),
            origin_stage_id=origin,
            cause_type=type(cause).__name__ if cause is not None else None,
        )


class StageOutcome(BaseModel):
    """Snapshot of one stage record."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    kind: StageKind
    state: StageState
    health: HealthState | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: ErrorInfo | None = None
    reused: bool = False
    probe_attempts: int = 0

    @classmethod
    def from_record(cls, record: StageRecord) -> StageOutcome:
        return cls(
            stage_id=record.stage_id,
            kind=record.kind,
            state=record.state,
            health=record.health,
            started_at=record.started_at,
            ended_at=record.ended_at,
            outputs=dict(record.outputs),
            error=ErrorInfo.from_error(record.error) if record.error else None,
            reused=record.reused,
            probe_attempts=record.probe_attempts,
        )


class RunResult(BaseModel):
    """Result of ``apply``: every stage's terminal state plus originating failures.

    Attributes
    ----------
    run_id : str
        Unique run identifier
    environment : str | None
        Name of the binding set the run used
    bindings : dict[str, Any]
        Variable bindings the run was applied with
    status : RunStatus
        SUCCEEDED only if no stage failed
    stages : dict[str, StageOutcome]
        Outcome per stage id
    failures : list[ErrorInfo]
        Originating causes only; skipped stages are not re-reported here
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    environment: str | None = None
    bindings: dict[str, Any] = Field(default_factory=dict)
    status: RunStatus
    stages: dict[str, StageOutcome] = Field(default_factory=dict)
    failures: list[ErrorInfo] = Field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def exit_code(self) -> ExitCode:
        """Map the run to the caller-visible result code."""
        if self.status is RunStatus.SUCCEEDED:
            return ExitCode.SUCCESS
        if self.status is RunStatus.INVALID:
            return ExitCode.INVALID_GRAPH
        if any(f.type == HealthCheckTimeoutError.__name__ for f in self.failures):
            return ExitCode.SERVICE_UNHEALTHY
        return ExitCode.STAGE_FAILED

    def stages_in(self, state: StageState) -> list[str]:
        return sorted(sid for sid, outcome in self.stages.items() if outcome.state is state)

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED
