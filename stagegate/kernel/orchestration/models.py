"""Data models shared by orchestrator components."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from stagegate.kernel.domain.stage import StageKind
from stagegate.kernel.exceptions import RunCancelledError, ValidationError

DEFAULT_MAX_CONCURRENT_STAGES = 10


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """Orchestrator execution defaults.

    Attributes
    ----------
    max_concurrent_stages : int
        Upper bound on stage actions running at the same time
    default_stage_timeout : float | None
        Action timeout applied when a stage declares none (None = unbounded)
    probe_interval : float
        Default seconds between readiness probe attempts
    probe_timeout : float
        Default upper bound for one probe attempt
    probe_max_attempts : int
        Default number of probe attempts before a service is Failed
    """

    max_concurrent_stages: int = DEFAULT_MAX_CONCURRENT_STAGES
    default_stage_timeout: float | None = None
    probe_interval: float = 10.0
    probe_timeout: float = 5.0
    probe_max_attempts: int = 6

    def __post_init__(self) -> None:
        if self.max_concurrent_stages < 1:
            raise ValidationError(
                "max_concurrent_stages", "must be >= 1", self.max_concurrent_stages
            )
        if self.default_stage_timeout is not None and self.default_stage_timeout <= 0:
            raise ValidationError(
                "default_stage_timeout", "must be > 0", self.default_stage_timeout
            )


@dataclass(frozen=True, slots=True)
class StageContext:
    """Everything a stage action may see.

    An action only reaches other stages' outputs through ``inputs``, which
    the input resolver fills from the stage's declared wiring.

    Attributes
    ----------
    run_id : str
        Current run
    stage_id : str
        Stage being executed
    kind : StageKind
        Stage kind
    inputs : Mapping[str, Any]
        Resolved inputs (upstream output values, Artifact objects, binding values)
    params : Mapping[str, Any]
        Stage params with ``${name}`` placeholders substituted
    bindings : Mapping[str, Any]
        The run's variable bindings
    cancel_event : asyncio.Event
        Set when the run is cancelled
    """

    run_id: str
    stage_id: str
    kind: StageKind
    inputs: Mapping[str, Any] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    bindings: Mapping[str, Any] = field(default_factory=dict)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        object.__setattr__(self, "bindings", MappingProxyType(dict(self.bindings)))

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        """Safe point for long actions: stop here if the run was cancelled.

        Raises
        ------
        RunCancelledError
            If the run has been cancelled
        """
        if self.cancel_event.is_set():
            raise RunCancelledError(self.run_id)
