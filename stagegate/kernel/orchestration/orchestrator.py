"""Stage Orchestrator - the run driver.

The Orchestrator resolves a StageGraph into levels and walks them in order.
Stages within a level run concurrently with ``asyncio.gather``; a stage is
released only when every dependency is ready (succeeded, and healthy when it
is a service). A failed dependency skips its whole dependent subtree with the
failure attributed to the stage where it originated, while independent
branches keep running.
"""

import asyncio
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stagegate.kernel.ports.apply_ledger import ApplyLedger
    from stagegate.kernel.ports.artifact_store import ArtifactStore
    from stagegate.kernel.ports.observer_manager import ObserverManager
    from stagegate.kernel.ports.run_store import RunStore

from stagegate.kernel.domain.graph import StageGraph
from stagegate.kernel.domain.run import (
    ErrorInfo,
    RunResult,
    RunStatus,
    StageOutcome,
    StageRecord,
    StageState,
)
from stagegate.kernel.domain.stage import StageSpec
from stagegate.kernel.exceptions import (
    DependencyFailedError,
    GraphError,
    RunCancelledError,
    RunNotFoundError,
    StageGateError,
    UnboundVariableError,
)
from stagegate.kernel.logging import get_logger, reset_run_id, set_run_id
from stagegate.kernel.orchestration.components import (
    ArtifactPromoter,
    HealthGate,
    InputResolver,
    StageExecutor,
)
from stagegate.kernel.orchestration.events import (
    LevelCompleted,
    RunCompleted,
    RunStarted,
    StageSkipped,
)
from stagegate.kernel.orchestration.models import OrchestratorConfig
from stagegate.kernel.utils.timer import Timer

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Side-effect-free view of how a graph would run.

    Attributes
    ----------
    levels : tuple[tuple[str, ...], ...]
        Stage ids per level, in execution order
    required_bindings : frozenset[str]
        Binding names the graph references
    services : frozenset[str]
        Stages gated on a readiness probe
    """

    levels: tuple[tuple[str, ...], ...]
    required_bindings: frozenset[str] = frozenset()
    services: frozenset[str] = frozenset()

    @property
    def total_stages(self) -> int:
        return sum(len(level) for level in self.levels)

    def level_of(self, stage_id: str) -> int:
        for index, level in enumerate(self.levels):
            if stage_id in level:
                return index
        raise KeyError(stage_id)


@dataclass(slots=True)
class _ActiveRun:
    run_id: str
    environment: str | None
    bindings: dict[str, Any]
    records: dict[str, StageRecord]
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def _as_graph(graph: StageGraph | Iterable[StageSpec]) -> StageGraph:
    return graph if isinstance(graph, StageGraph) else StageGraph(list(graph))


class Orchestrator:
    """Plans and applies stage graphs.

    The orchestrator owns run state: one record table per run, never shared
    between runs. Collaborators are injected through ports; in-memory drivers
    are used for any that are omitted.

    Examples
    --------
    Example usage::

        orchestrator = Orchestrator(OrchestratorConfig(max_concurrent_stages=4))
        result = await orchestrator.apply(graph, {"revision": "abc123"}, environment="staging")
        raise SystemExit(result.exit_code)
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        *,
        artifact_store: "ArtifactStore | None" = None,
        ledger: "ApplyLedger | None" = None,
        run_store: "RunStore | None" = None,
        observer_manager: "ObserverManager | None" = None,
        health_gate: HealthGate | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Parameters
        ----------
        config : OrchestratorConfig | None
            Concurrency limit and default timeouts
        artifact_store : ArtifactStore | None
            Where promoted artifacts live
        ledger : ApplyLedger | None
            Outputs of previous applies, for stages that reuse outputs
        run_store : RunStore | None
            Persists run results for ``status``
        observer_manager : ObserverManager | None
            Receives lifecycle events
        health_gate : HealthGate | None
            Readiness watcher (inject one with a fake clock in tests)

        Notes
        -----
        Default drivers are imported lazily so the kernel does not depend on
        ``stagegate.drivers`` at module import time.
        """
        self.config = config or OrchestratorConfig()
        self._observer_manager = observer_manager

        if ledger is None:
            from stagegate.drivers.apply_ledger import InMemoryApplyLedger  # lazy

            ledger = InMemoryApplyLedger()
        if run_store is None:
            from stagegate.drivers.run_store import InMemoryRunStore  # lazy

            run_store = InMemoryRunStore()

        self.ledger = ledger
        self.run_store = run_store
        self.promoter = ArtifactPromoter(artifact_store, observer_manager)
        self.health_gate = health_gate or HealthGate(observer_manager)
        self.executor = StageExecutor(
            InputResolver(self.promoter),
            self.promoter,
            self.health_gate,
            ledger=ledger,
            observer_manager=observer_manager,
            default_stage_timeout=self.config.default_stage_timeout,
        )
        self._runs: dict[str, _ActiveRun] = {}

    @property
    def observer_manager(self) -> "ObserverManager | None":
        return self._observer_manager

    async def _notify(self, event: Any) -> None:
        if self._observer_manager is not None:
            await self._observer_manager.notify(event)

    # ------------------------------------------------------------------
    # plan
    # ------------------------------------------------------------------

    def plan(
        self,
        graph: StageGraph | Iterable[StageSpec],
        bindings: Mapping[str, Any] | None = None,
    ) -> ExecutionPlan:
        """Validate *graph* and return its levels without executing anything.

        Parameters
        ----------
        graph : StageGraph | Iterable[StageSpec]
            Stages to plan
        bindings : Mapping[str, Any] | None
            When given, every binding the graph references must be present

        Returns
        -------
        ExecutionPlan
            Levels, required binding names and service stages

        Raises
        ------
        GraphError
            CycleError, DanglingReferenceError, DuplicateStageError or InputWiringError
        UnboundVariableError
            If *bindings* is given and misses a referenced name
        """
        graph = _as_graph(graph)
        levels = graph.levels()
        required = graph.required_bindings()

        if bindings is not None:
            missing = required - set(bindings)
            if missing:
                raise UnboundVariableError(sorted(missing))

        return ExecutionPlan(
            levels=tuple(tuple(level) for level in levels),
            required_bindings=frozenset(required),
            services=frozenset(stage.id for stage in graph if stage.is_service),
        )

    # ------------------------------------------------------------------
    # apply
    # ------------------------------------------------------------------

    async def apply(
        self,
        graph: StageGraph | Iterable[StageSpec],
        bindings: Mapping[str, Any] | None = None,
        environment: str | None = None,
        run_id: str | None = None,
    ) -> RunResult:
        """Execute *graph* with *bindings* and return every stage's terminal state.

        Structural problems (cycle, dangling reference, bad wiring, missing
        bindings) produce an INVALID result before any stage executes. Stage
        failures never raise; they are recorded and isolated to their
        dependent subtree.

        Parameters
        ----------
        graph : StageGraph | Iterable[StageSpec]
            Stages to apply
        bindings : Mapping[str, Any] | None
            Flat name -> value mapping for this environment
        environment : str | None
            Name of the binding set, reported in the result
        run_id : str | None
            Explicit run id; generated when omitted

        Returns
        -------
        RunResult
            Stage outcomes, originating failures and the overall status
        """
        run_id = run_id or uuid.uuid4().hex[:12]
        bindings = dict(bindings or {})
        token = set_run_id(run_id)
        try:
            try:
                graph = _as_graph(graph)
                plan = self.plan(graph, bindings)
            except (GraphError, UnboundVariableError) as e:
                logger.error("Run '{run_id}' rejected: {error}", run_id=run_id, error=e)
                now = datetime.now(UTC)
                result = RunResult(
                    run_id=run_id,
                    environment=environment,
                    bindings=bindings,
                    status=RunStatus.INVALID,
                    failures=[ErrorInfo.from_error(e)],
                    started_at=now,
                    ended_at=now,
                )
                await self.run_store.asave(result)
                return result

            return await self._execute(graph, plan, bindings, environment, run_id)
        finally:
            reset_run_id(token)

    async def _execute(
        self,
        graph: StageGraph,
        plan: ExecutionPlan,
        bindings: dict[str, Any],
        environment: str | None,
        run_id: str,
    ) -> RunResult:
        run = _ActiveRun(
            run_id=run_id,
            environment=environment,
            bindings=bindings,
            records={
                stage.id: StageRecord(stage.id, stage.kind, is_service=stage.is_service)
                for stage in graph
            },
        )
        self._runs[run_id] = run
        semaphore = asyncio.Semaphore(self.config.max_concurrent_stages)
        run_timer = Timer()

        await self.run_store.asave(self._snapshot(run, RunStatus.RUNNING))
        await self._notify(
            RunStarted(
                run_id=run_id,
                total_levels=len(plan.levels),
                total_stages=plan.total_stages,
                environment=environment,
            )
        )

        try:
            for level_index, level in enumerate(plan.levels):
                level_timer = Timer()
                await asyncio.gather(*(
                    self._run_stage(graph[stage_id], run, semaphore, level_index)
                    for stage_id in level
                ))
                await self._notify(
                    LevelCompleted(
                        level_index=level_index,
                        stages=level,
                        duration_ms=level_timer.duration_ms,
                    )
                )
        finally:
            self._runs.pop(run_id, None)

        result = self._snapshot(run, self._final_status(run), ended=True)
        await self.run_store.asave(result)
        await self._notify(
            RunCompleted(
                run_id=run_id,
                status=result.status.value,
                duration_ms=run_timer.duration_ms,
                failed=tuple(result.stages_in(StageState.FAILED)),
            )
        )
        return result

    async def _run_stage(
        self,
        stage: StageSpec,
        run: _ActiveRun,
        semaphore: asyncio.Semaphore,
        level_index: int,
    ) -> None:
        record = run.records[stage.id]

        if run.cancel_event.is_set():
            await self._skip(record, RunCancelledError(run.run_id), "run cancelled")
            return

        blocker = self._blocking_cause(stage, run)
        if blocker is not None:
            await self._skip(record, blocker, str(blocker))
            return

        await self.executor.execute(
            stage,
            record,
            run_id=run.run_id,
            records=run.records,
            bindings=run.bindings,
            cancel_event=run.cancel_event,
            semaphore=semaphore,
            level_index=level_index,
        )

    def _blocking_cause(self, stage: StageSpec, run: _ActiveRun) -> StageGateError | None:
        """Return why *stage* may not run, attributed to the originating failure."""
        for dep_id in sorted(stage.depends_on):
            dep = run.records[dep_id]
            if dep.is_ready:
                continue
            cause = dep.error
            if isinstance(cause, RunCancelledError):
                return cause
            if isinstance(cause, DependencyFailedError):
                return DependencyFailedError(stage.id, cause.origin_stage_id, cause.origin)
            if cause is not None:
                return DependencyFailedError(stage.id, dep_id, cause)
        return None

    async def _skip(self, record: StageRecord, cause: StageGateError, reason: str) -> None:
        record.mark_skipped(cause)
        origin = cause.origin_stage_id if isinstance(cause, DependencyFailedError) else None
        logger.info("Stage '{stage}' skipped: {reason}", stage=record.stage_id, reason=reason)
        await self._notify(StageSkipped(name=record.stage_id, reason=reason, origin=origin))

    @staticmethod
    def _final_status(run: _ActiveRun) -> RunStatus:
        records = run.records.values()
        if any(isinstance(r.error, RunCancelledError) for r in records):
            return RunStatus.CANCELLED
        if any(r.state is StageState.FAILED for r in records):
            return RunStatus.FAILED
        return RunStatus.SUCCEEDED

    @staticmethod
    def _snapshot(run: _ActiveRun, status: RunStatus, ended: bool = False) -> RunResult:
        failures = [
            ErrorInfo.from_error(record.error)
            for _, record in sorted(run.records.items())
            if record.state is StageState.FAILED and record.error is not None
        ]
        return RunResult(
            run_id=run.run_id,
            environment=run.environment,
            bindings=run.bindings,
            status=status,
            stages={sid: StageOutcome.from_record(r) for sid, r in run.records.items()},
            failures=failures,
            started_at=run.started_at,
            ended_at=datetime.now(UTC) if ended else None,
        )

    # ------------------------------------------------------------------
    # status / cancel
    # ------------------------------------------------------------------

    async def status(self, run_id: str) -> RunResult:
        """Return a live snapshot of an active run, or the stored result.

        Raises
        ------
        RunNotFoundError
            If the run is neither active nor stored
        """
        if (run := self._runs.get(run_id)) is not None:
            return self._snapshot(run, RunStatus.RUNNING)
        result = await self.run_store.aload(run_id)
        if result is None:
            raise RunNotFoundError(run_id)
        return result

    def cancel(self, run_id: str) -> bool:
        """Signal an active run to stop.

        In-flight actions observe the signal through their StageContext; stages
        not yet started are skipped. Returns False if the run is not active.
        """
        run = self._runs.get(run_id)
        if run is None:
            return False
        logger.warning("Cancelling run '{run_id}'", run_id=run_id)
        run.cancel_event.set()
        return True

    @property
    def active_runs(self) -> list[str]:
        return list(self._runs)
