"""Core exception hierarchy for stagegate.

All stagegate exceptions inherit from StageGateError so callers can handle
every orchestrator failure with a single ``except`` clause. Structural graph
errors are raised before any stage executes; execution-time errors are
recorded on stage records rather than propagated out of ``apply``.
"""

from __future__ import annotations

from enum import IntEnum

# ============================================================================
# Base Exception
# ============================================================================


class StageGateError(Exception):
    """Base exception for all stagegate errors."""

    pass


class ExitCode(IntEnum):
    """Result codes surfaced to callers of ``apply``.

    Attributes
    ----------
    SUCCESS : int
        Every stage succeeded
    STAGE_FAILED : int
        One or more stages failed (or the run was cancelled)
    INVALID_GRAPH : int
        The graph or its bindings are invalid (nothing executed)
    SERVICE_UNHEALTHY : int
        A watched service never became healthy within its budget
    """

    SUCCESS = 0
    STAGE_FAILED = 1
    INVALID_GRAPH = 2
    SERVICE_UNHEALTHY = 3


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(StageGateError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("orchestrator", "max_concurrent_stages must be >= 1")
    """

    def __init__(self, component: str, reason: str) -> None:
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class ValidationError(StageGateError):
    """Raised when a field value fails validation."""

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


class ManifestError(StageGateError):
    """Raised when a YAML manifest cannot be parsed into a stage graph."""

    pass


class ResolveError(StageGateError):
    """Raised when a ``module:attribute`` reference cannot be imported."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(f"Cannot resolve '{reference}': {reason}")
        self.reference = reference
        self.reason = reason


# ============================================================================
# Graph Errors (plan time)
# ============================================================================


class GraphError(StageGateError):
    """Base class for structural errors detected before dispatch."""

    pass


class CycleError(GraphError):
    """Raised when the dependency relation contains a cycle.

    Attributes
    ----------
    cycle : list[str]
        One offending cycle, first element repeated at the end
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Cycle detected: {' -> '.join(cycle)}")


class DanglingReferenceError(GraphError):
    """Raised when a stage names a dependency id that does not exist."""

    def __init__(self, stage_id: str, missing: str) -> None:
        self.stage_id = stage_id
        self.missing = missing
        super().__init__(f"Stage '{stage_id}' references unknown stage '{missing}'")


class DuplicateStageError(GraphError):
    """Raised when two stages share an id."""

    def __init__(self, stage_id: str) -> None:
        self.stage_id = stage_id
        super().__init__(f"Stage '{stage_id}' already exists in the graph")


class InputWiringError(GraphError):
    """Raised when an input reference is not backed by a declared dependency/output."""

    def __init__(self, stage_id: str, input_name: str, reason: str) -> None:
        self.stage_id = stage_id
        self.input_name = input_name
        self.reason = reason
        super().__init__(f"Stage '{stage_id}' input '{input_name}': {reason}")


class UnboundVariableError(StageGateError):
    """Raised when a ``${name}`` placeholder has no binding in the run."""

    def __init__(self, names: list[str], stage_id: str | None = None) -> None:
        self.names = sorted(names)
        self.stage_id = stage_id
        where = f" in stage '{stage_id}'" if stage_id else ""
        super().__init__(f"Unbound variable(s){where}: {', '.join(self.names)}")


# ============================================================================
# Execution Errors (recorded per stage)
# ============================================================================


class StageExecutionError(StageGateError):
    """Raised when a stage's external action fails.

    Attributes
    ----------
    stage_id : str
        Failing stage
    cause : BaseException
        Underlying error raised by the action (or by input resolution)
    """

    def __init__(self, stage_id: str, cause: BaseException) -> None:
        self.stage_id = stage_id
        self.cause = cause
        super().__init__(f"Stage '{stage_id}' failed: {cause}")


class StageTimeoutError(StageExecutionError):
    """Raised when a stage action exceeds its timeout."""

    def __init__(self, stage_id: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(stage_id, TimeoutError(f"action exceeded {timeout}s"))


class HealthCheckTimeoutError(StageGateError):
    """Raised (and recorded) when a service never reached Healthy."""

    def __init__(self, stage_id: str, attempts: int, last_error: BaseException | None = None):
        self.stage_id = stage_id
        self.attempts = attempts
        self.last_error = last_error
        detail = f" (last error: {last_error})" if last_error else ""
        super().__init__(
            f"Service '{stage_id}' not healthy after {attempts} attempt(s){detail}"
        )


class ArtifactNotFoundError(StageGateError):
    """Raised when an artifact identity was never promoted."""

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(f"Artifact '{identity}' has not been promoted")


class DependencyFailedError(StageGateError):
    """Synthetic cause attached to every transitively skipped stage.

    Attributes
    ----------
    stage_id : str
        The skipped stage
    origin_stage_id : str
        Stage whose failure caused the skip
    origin : StageGateError
        The originating failure
    """

    def __init__(self, stage_id: str, origin_stage_id: str, origin: StageGateError) -> None:
        self.stage_id = stage_id
        self.origin_stage_id = origin_stage_id
        self.origin = origin
        super().__init__(
            f"Stage '{stage_id}' skipped: dependency '{origin_stage_id}' failed"
        )


class RunCancelledError(StageGateError):
    """Cause recorded on stages that did not run because the run was cancelled."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' was cancelled")


class RunNotFoundError(StageGateError):
    """Raised by ``status`` for an unknown run id."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' not found")


class CommandFailedError(StageGateError):
    """Raised by the shell command action when the command exits non-zero."""

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        detail = f": {tail}" if tail else ""
        super().__init__(f"Command exited with status {returncode}{detail}")
