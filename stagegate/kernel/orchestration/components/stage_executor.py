"""Stage executor for individual stage execution.

This module provides the StageExecutor class that runs one stage with its full
lifecycle: input resolution, idempotent-apply lookup, the external action
(bounded by a timeout and the run's concurrency limit), artifact promotion,
output checks, the readiness watch for services, record transitions and
events.
"""

import asyncio
import contextlib
import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stagegate.kernel.ports.apply_ledger import ApplyLedger
    from stagegate.kernel.ports.observer_manager import ObserverManager

from stagegate.kernel.domain.artifact import Artifact
from stagegate.kernel.domain.run import StageRecord
from stagegate.kernel.domain.stage import StageSpec
from stagegate.kernel.exceptions import (
    RunCancelledError,
    StageExecutionError,
    StageGateError,
    StageTimeoutError,
)
from stagegate.kernel.logging import get_logger
from stagegate.kernel.orchestration.components.artifact_promoter import ArtifactPromoter
from stagegate.kernel.orchestration.components.health_gate import HealthGate
from stagegate.kernel.orchestration.components.input_resolver import InputResolver
from stagegate.kernel.orchestration.events import (
    StageCompleted,
    StageFailed,
    StageSkipped,
    StageStarted,
)
from stagegate.kernel.orchestration.models import StageContext
from stagegate.kernel.utils.callables import call_maybe_async
from stagegate.kernel.utils.timer import Timer

logger = get_logger(__name__)

ARTIFACT_ID_OUTPUT = "artifact_id"


def _fingerprint_default(value: Any) -> Any:
    if isinstance(value, Artifact):
        return {"artifact": value.identity}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, set | frozenset):
        return sorted(value, key=str)
    return repr(value)


def _action_identity(action: Any) -> str | None:
    """Identity of an action that is stable across processes."""
    if action is None:
        return None
    if hasattr(action, "__qualname__"):
        return f"{getattr(action, '__module__', '')}:{action.__qualname__}"
    if type(action).__repr__ is not object.__repr__:
        return repr(action)
    return f"{type(action).__module__}:{type(action).__qualname__}"


def fingerprint(
    stage: StageSpec,
    inputs: Mapping[str, Any],
    params: Mapping[str, Any],
    bindings: Mapping[str, Any] | None = None,
) -> str:
    """Stable digest of everything that determines a stage's result.

    Two applies of the same stage and action with equal resolved inputs,
    params and run bindings have the same fingerprint, so the second can
    reuse the first one's outputs.
    """
    document = {
        "id": stage.id,
        "kind": stage.kind.value,
        "action": _action_identity(stage.action),
        "inputs": dict(inputs),
        "params": dict(params),
        "bindings": dict(bindings or {}),
    }
    encoded = json.dumps(document, sort_keys=True, default=_fingerprint_default)
    return hashlib.sha256(encoded.encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class _ActionResult:
    outputs: dict[str, Any]
    reused: bool
    fingerprint: str | None


class StageExecutor:
    """Runs one stage of one run and records its terminal state.

    Failures never escape ``execute``: they are wrapped in StageExecutionError
    (or HealthCheckTimeoutError for services) and recorded on the stage record.
    A cancelled run records the stage as skipped with RunCancelledError.

    Examples
    --------
    Example usage::

        executor = StageExecutor(InputResolver(promoter), promoter, HealthGate())
        await executor.execute(stage, record, run_id="r1", records=records, bindings={})
    """

    def __init__(
        self,
        resolver: InputResolver,
        promoter: ArtifactPromoter,
        health_gate: HealthGate,
        ledger: "ApplyLedger | None" = None,
        observer_manager: "ObserverManager | None" = None,
        default_stage_timeout: float | None = None,
    ) -> None:
        """Initialize the stage executor.

        Parameters
        ----------
        resolver : InputResolver
            Resolves declared inputs and params
        promoter : ArtifactPromoter
            Promotes build outputs that declare an artifact identity
        health_gate : HealthGate
            Watches service stages after their action succeeds
        ledger : ApplyLedger | None
            Enables idempotent apply for stages that reuse outputs
        observer_manager : ObserverManager | None
            Receives stage lifecycle events
        default_stage_timeout : float | None
            Action timeout for stages that declare none. None means no timeout.
        """
        self.resolver = resolver
        self.promoter = promoter
        self.health_gate = health_gate
        self.ledger = ledger
        self._observer_manager = observer_manager
        self.default_stage_timeout = default_stage_timeout

    async def _notify(self, event: Any) -> None:
        if self._observer_manager is not None:
            await self._observer_manager.notify(event)

    async def execute(
        self,
        stage: StageSpec,
        record: StageRecord,
        *,
        run_id: str,
        records: Mapping[str, StageRecord],
        bindings: Mapping[str, Any],
        cancel_event: asyncio.Event | None = None,
        semaphore: asyncio.Semaphore | None = None,
        level_index: int = 0,
    ) -> StageRecord:
        """Execute *stage* once and leave *record* in a terminal state.

        Parameters
        ----------
        stage : StageSpec
            Stage to run
        record : StageRecord
            The stage's record in this run (must be PENDING)
        run_id : str
            Current run
        records : Mapping[str, StageRecord]
            All records of the run, used to read upstream outputs
        bindings : Mapping[str, Any]
            The run's variable bindings
        cancel_event : asyncio.Event | None
            The run's cancellation token
        semaphore : asyncio.Semaphore | None
            Held only while the external action runs
        level_index : int
            Level the stage belongs to (reported in events)

        Returns
        -------
        StageRecord
            *record*, now SUCCEEDED, FAILED or SKIPPED
        """
        cancel_event = cancel_event or asyncio.Event()
        timer = Timer()

        record.mark_running()
        await self._notify(
            StageStarted(
                name=stage.id,
                level_index=level_index,
                kind=stage.kind.value,
                dependencies=tuple(sorted(stage.depends_on)),
            )
        )

        try:
            result = await self._run_action(
                stage,
                run_id=run_id,
                records=records,
                bindings=bindings,
                cancel_event=cancel_event,
                semaphore=semaphore,
            )

            if stage.service is not None:
                verdict = await self.health_gate.watch_service(
                    stage.id,
                    stage.service,
                    record=record,
                    cancel_event=cancel_event,
                    run_id=run_id,
                )
                if not verdict.healthy:
                    await self._fail(record, verdict.to_error(), level_index)
                    return record

        except RunCancelledError as e:
            record.mark_skipped(e)
            await self._notify(StageSkipped(name=stage.id, reason="run cancelled"))
            return record
        except StageGateError as e:
            await self._fail(record, e, level_index)
            return record

        if result.fingerprint is not None and self.ledger is not None and not result.reused:
            await self.ledger.arecord(stage.id, result.fingerprint, result.outputs)

        record.mark_succeeded(result.outputs, reused=result.reused)
        await self._notify(
            StageCompleted(
                name=stage.id,
                level_index=level_index,
                outputs=dict(result.outputs),
                duration_ms=timer.duration_ms,
                reused=result.reused,
            )
        )
        return record

    async def _fail(self, record: StageRecord, error: StageGateError, level_index: int) -> None:
        record.mark_failed(error)
        logger.debug("Stage '{stage}' failed: {error}", stage=record.stage_id, error=error)
        await self._notify(StageFailed(name=record.stage_id, level_index=level_index, error=error))

    async def _run_action(
        self,
        stage: StageSpec,
        *,
        run_id: str,
        records: Mapping[str, StageRecord],
        bindings: Mapping[str, Any],
        cancel_event: asyncio.Event,
        semaphore: asyncio.Semaphore | None,
    ) -> _ActionResult:
        """Resolve inputs, consult the ledger, then invoke or promote.

        Raises
        ------
        RunCancelledError
            If the run was cancelled before or during the action
        StageExecutionError
            For every other failure, wrapping the underlying cause
        """
        try:
            inputs = await self.resolver.resolve_inputs(stage, records, bindings)
            params = self.resolver.resolve_params(stage, bindings)
            identity = self.resolver.artifact_identity(stage, bindings)
        except StageGateError as e:
            raise StageExecutionError(stage.id, e) from e

        digest: str | None = None
        if stage.reuses_outputs and self.ledger is not None:
            digest = fingerprint(stage, inputs, params, bindings)
            previous = await self.ledger.alookup(stage.id, digest)
            if previous is not None:
                logger.info(
                    "Stage '{stage}' unchanged since a previous apply, reusing outputs",
                    stage=stage.id,
                )
                return _ActionResult(previous, reused=True, fingerprint=digest)

        ctx = StageContext(
            run_id=run_id,
            stage_id=stage.id,
            kind=stage.kind,
            inputs=inputs,
            params=params,
            bindings=bindings,
            cancel_event=cancel_event,
        )

        async def invoke() -> dict[str, Any]:
            return await self._invoke(stage, ctx, semaphore)

        try:
            if identity is None:
                outputs = await invoke()
                reused = False
            else:
                promotion = await self.promoter.promote_detailed(
                    identity, invoke, producer_stage=stage.id
                )
                outputs = {**promotion.artifact.payload, ARTIFACT_ID_OUTPUT: identity}
                reused = not promotion.created
        except (RunCancelledError, StageExecutionError):
            raise
        except Exception as e:
            raise StageExecutionError(stage.id, e) from e

        missing = [name for name in stage.outputs if name not in outputs]
        if missing:
            raise StageExecutionError(
                stage.id, ValueError(f"action did not produce declared output(s): {missing}")
            )
        return _ActionResult(outputs, reused=reused, fingerprint=digest)

    async def _invoke(
        self, stage: StageSpec, ctx: StageContext, semaphore: asyncio.Semaphore | None
    ) -> dict[str, Any]:
        if stage.action is None:
            return {}

        timeout = stage.timeout or self.default_stage_timeout
        async with semaphore if semaphore is not None else contextlib.nullcontext():
            ctx.raise_if_cancelled()
            try:
                async with asyncio.timeout(timeout):
                    raw = await call_maybe_async(stage.action, ctx)
            except TimeoutError as e:
                if timeout is None:
                    raise
                raise StageTimeoutError(stage.id, timeout) from e

        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise StageExecutionError(
                stage.id, TypeError(f"action must return a mapping, got {type(raw).__name__}")
            )
        return dict(raw)
