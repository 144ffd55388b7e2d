"""Tests for the Orchestrator: scheduling, readiness gating, isolation and cancellation."""

import asyncio

import pytest

from stagegate.drivers.actions import CommandAction
from stagegate.drivers.apply_ledger import InMemoryApplyLedger
from stagegate.drivers.artifact_store import InMemoryArtifactStore
from stagegate.drivers.run_store import InMemoryRunStore
from stagegate.kernel.domain import (
    HealthState,
    RunStatus,
    ServiceSpec,
    StageGraph,
    StageKind,
    StageSpec,
    StageState,
)
from stagegate.kernel.exceptions import (
    CycleError,
    ExitCode,
    RunNotFoundError,
    UnboundVariableError,
)
from stagegate.kernel.orchestration import Orchestrator, OrchestratorConfig
from stagegate.kernel.orchestration.events import (
    LevelCompleted,
    RunCompleted,
    RunStarted,
    StageSkipped,
)


def ok(outputs: dict | None = None, log: list | None = None):
    async def action(ctx) -> dict:
        if log is not None:
            log.append(ctx.stage_id)
        return dict(outputs or {})

    return action


def boom(message: str = "boom"):
    async def action(ctx) -> dict:
        raise RuntimeError(message)

    return action


@pytest.fixture
def orchestrator(gate, recorder) -> Orchestrator:
    return Orchestrator(observer_manager=recorder, health_gate=gate)


class TestPlan:
    def test_levels(self, orchestrator: Orchestrator) -> None:
        plan = orchestrator.plan([
            StageSpec("db", StageKind.PROVISION, service=ServiceSpec(probe=lambda: True)),
            StageSpec("build", StageKind.BUILD, artifact="app-${revision}"),
            StageSpec("deploy", StageKind.DEPLOY, depends_on=frozenset({"db", "build"})),
        ])
        assert plan.levels == (("build", "db"), ("deploy",))
        assert plan.total_stages == 3
        assert plan.level_of("deploy") == 1
        assert plan.services == frozenset({"db"})
        assert plan.required_bindings == frozenset({"revision"})

    def test_missing_bindings(self, orchestrator: Orchestrator) -> None:
        stages = [StageSpec("build", StageKind.BUILD, artifact="app-${revision}")]
        with pytest.raises(UnboundVariableError):
            orchestrator.plan(stages, bindings={})
        orchestrator.plan(stages, bindings={"revision": "abc"})

    def test_cycle(self, orchestrator: Orchestrator) -> None:
        with pytest.raises(CycleError):
            orchestrator.plan([
                StageSpec("a", StageKind.TEST, depends_on=frozenset({"b"})),
                StageSpec("b", StageKind.TEST, depends_on=frozenset({"a"})),
            ])


class TestApply:
    @pytest.mark.asyncio
    async def test_dependency_order(self, orchestrator: Orchestrator) -> None:
        log: list[str] = []
        graph = StageGraph([
            StageSpec("a", StageKind.PROVISION, ok(log=log)),
            StageSpec("b", StageKind.BUILD, ok(log=log), depends_on=frozenset({"a"})),
            StageSpec("c", StageKind.TEST, ok(log=log), depends_on=frozenset({"b"})),
        ])
        result = await orchestrator.apply(graph)

        assert result.status is RunStatus.SUCCEEDED
        assert result.exit_code is ExitCode.SUCCESS
        assert log == ["a", "b", "c"]
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_outputs_flow_to_inputs(self, orchestrator: Orchestrator) -> None:
        seen = {}

        async def migrate(ctx) -> dict:
            seen.update(ctx.inputs)
            return {}

        result = await orchestrator.apply([
            StageSpec("db", StageKind.PROVISION, ok({"url": "postgres://db"}), outputs=("url",)),
            StageSpec(
                "migrate",
                StageKind.DEPLOY,
                migrate,
                depends_on=frozenset({"db"}),
                inputs={"database_url": "db.url"},
            ),
        ])
        assert result.succeeded
        assert seen == {"database_url": "postgres://db"}

    @pytest.mark.asyncio
    async def test_failure_isolated_to_dependent_subtree(
        self, orchestrator: Orchestrator, recorder
    ) -> None:
        log: list[str] = []
        result = await orchestrator.apply([
            StageSpec("a", StageKind.BUILD, boom("compile error")),
            StageSpec("b", StageKind.BUILD, ok(log=log)),
            StageSpec("c", StageKind.TEST, ok(log=log), depends_on=frozenset({"a"})),
            StageSpec("d", StageKind.TEST, ok(log=log), depends_on=frozenset({"b"})),
            StageSpec("e", StageKind.VERIFY, ok(log=log), depends_on=frozenset({"c"})),
        ])

        assert result.status is RunStatus.FAILED
        assert result.exit_code is ExitCode.STAGE_FAILED
        assert result.stages["a"].state is StageState.FAILED
        assert result.stages["b"].state is StageState.SUCCEEDED
        assert result.stages["d"].state is StageState.SUCCEEDED
        for skipped in ("c", "e"):
            outcome = result.stages[skipped]
            assert outcome.state is StageState.SKIPPED
            assert outcome.error.type == "DependencyFailedError"
            assert outcome.error.origin_stage_id == "a"
        assert sorted(log) == ["b", "d"]
        # only the originating failure is reported
        assert [f.origin_stage_id for f in result.failures] == ["a"]
        assert "compile error" in result.failures[0].message
        assert {e.name: e.origin for e in recorder.of_type(StageSkipped)} == {"c": "a", "e": "a"}

    @pytest.mark.asyncio
    async def test_independent_stages_run_concurrently(self) -> None:
        started = asyncio.Event()
        both = asyncio.Barrier(2)

        async def meet(ctx) -> dict:
            started.set()
            async with asyncio.timeout(1):
                await both.wait()
            return {}

        result = await Orchestrator().apply([
            StageSpec("x", StageKind.TEST, meet),
            StageSpec("y", StageKind.TEST, meet),
        ])
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_concurrency_limit(self) -> None:
        running = 0
        peak = 0

        async def action(ctx) -> dict:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return {}

        orchestrator = Orchestrator(OrchestratorConfig(max_concurrent_stages=2))
        result = await orchestrator.apply(
            [StageSpec(f"t{i}", StageKind.TEST, action) for i in range(6)]
        )
        assert result.succeeded
        assert peak == 2

    @pytest.mark.asyncio
    async def test_events(self, orchestrator: Orchestrator, recorder) -> None:
        await orchestrator.apply([
            StageSpec("a", StageKind.TEST, ok()),
            StageSpec("b", StageKind.TEST, ok(), depends_on=frozenset({"a"})),
        ])
        assert len(recorder.of_type(RunStarted)) == 1
        assert [e.level_index for e in recorder.of_type(LevelCompleted)] == [0, 1]
        completed = recorder.of_type(RunCompleted)
        assert completed[0].status == "succeeded"


class TestReadiness:
    @pytest.mark.asyncio
    async def test_dependents_wait_for_healthy(self, orchestrator: Orchestrator) -> None:
        timeline: list[str] = []
        attempts = iter([False, False, True])

        def probe() -> bool:
            healthy = next(attempts)
            timeline.append(f"probe:{healthy}")
            return healthy

        result = await orchestrator.apply([
            StageSpec(
                "db",
                StageKind.PROVISION,
                ok({"url": "postgres://db"}),
                outputs=("url",),
                service=ServiceSpec(probe=probe, interval=10, timeout=5),
            ),
            StageSpec(
                "migrate",
                StageKind.DEPLOY,
                ok(log=timeline),
                depends_on=frozenset({"db"}),
                inputs={"url": "db.url"},
            ),
        ])

        assert result.succeeded
        assert timeline == ["probe:False", "probe:False", "probe:True", "migrate"]
        assert result.stages["db"].health is HealthState.HEALTHY
        assert result.stages["db"].probe_attempts == 3

    @pytest.mark.asyncio
    async def test_unhealthy_service_skips_dependents(self, orchestrator: Orchestrator) -> None:
        log: list[str] = []
        result = await orchestrator.apply([
            StageSpec(
                "db",
                StageKind.PROVISION,
                ok(),
                service=ServiceSpec(probe=lambda: False, interval=1, timeout=1, max_attempts=3),
            ),
            StageSpec("migrate", StageKind.DEPLOY, ok(log=log), depends_on=frozenset({"db"})),
            StageSpec("lint", StageKind.TEST, ok(log=log)),
        ])

        assert result.status is RunStatus.FAILED
        assert result.exit_code is ExitCode.SERVICE_UNHEALTHY
        assert result.stages["db"].error.type == "HealthCheckTimeoutError"
        assert result.stages["migrate"].state is StageState.SKIPPED
        assert result.stages["migrate"].error.origin_stage_id == "db"
        assert log == ["lint"]

    @pytest.mark.asyncio
    async def test_slow_service_does_not_block_independent_branch(self) -> None:
        release = asyncio.Event()
        finished: list[str] = []

        async def probe() -> bool:
            return release.is_set()

        async def unrelated(ctx) -> dict:
            finished.append(ctx.stage_id)
            release.set()
            return {}

        orchestrator = Orchestrator()
        result = await orchestrator.apply([
            StageSpec(
                "db",
                StageKind.PROVISION,
                ok(),
                service=ServiceSpec(probe=probe, interval=0.01, timeout=1, max_attempts=50),
            ),
            StageSpec("build", StageKind.BUILD, unrelated),
        ])
        assert result.succeeded
        assert finished == ["build"]


class TestArtifactsAndReuse:
    @pytest.mark.asyncio
    async def test_build_once_per_revision_across_runs(self) -> None:
        builds: list[str] = []
        verified: list[str] = []

        async def build(ctx) -> dict:
            builds.append(ctx.bindings["revision"])
            return {"image": f"registry/app:{ctx.bindings['revision']}"}

        async def verify(ctx) -> dict:
            verified.append(ctx.inputs["artifact"].payload["image"])
            return {}

        stages = [
            StageSpec("build", StageKind.BUILD, build, artifact="app-${revision}"),
            StageSpec(
                "test",
                StageKind.TEST,
                ok(),
                depends_on=frozenset({"build"}),
                inputs={"image": "build.artifact_id"},
            ),
            StageSpec(
                "verify",
                StageKind.VERIFY,
                verify,
                depends_on=frozenset({"test"}),
                inputs={"artifact": "artifact:app-${revision}"},
            ),
        ]
        orchestrator = Orchestrator(artifact_store=InMemoryArtifactStore())

        first = await orchestrator.apply(stages, {"revision": "abc"})
        second = await orchestrator.apply(stages, {"revision": "abc"})
        third = await orchestrator.apply(stages, {"revision": "def"})

        assert builds == ["abc", "def"]
        assert verified == ["registry/app:abc"] * 2 + ["registry/app:def"]
        assert not first.stages["build"].reused
        assert second.stages["build"].reused
        assert second.stages["build"].outputs["artifact_id"] == "app-abc"
        assert third.stages["build"].outputs["artifact_id"] == "app-def"

    @pytest.mark.asyncio
    async def test_provision_reused_across_applies(self) -> None:
        calls: list[str] = []

        async def provision(ctx) -> dict:
            calls.append(ctx.run_id)
            return {"url": f"postgres://{ctx.params['size']}"}

        stage = StageSpec(
            "db", StageKind.PROVISION, provision, outputs=("url",), params={"size": "${size}"}
        )
        orchestrator = Orchestrator(ledger=InMemoryApplyLedger())

        await orchestrator.apply([stage], {"size": "small"})
        again = await orchestrator.apply([stage], {"size": "small"})
        resized = await orchestrator.apply([stage], {"size": "large"})

        assert len(calls) == 2
        assert again.stages["db"].reused
        assert again.stages["db"].outputs == {"url": "postgres://small"}
        assert not resized.stages["db"].reused

    @pytest.mark.asyncio
    async def test_provision_not_reused_across_environments(self) -> None:
        stage = StageSpec(
            "database",
            StageKind.PROVISION,
            CommandAction("echo '::output url=postgres://localhost/${env}'"),
            outputs=("url",),
        )
        orchestrator = Orchestrator(ledger=InMemoryApplyLedger())

        staging = await orchestrator.apply([stage], {"env": "staging"}, environment="staging")
        prod = await orchestrator.apply([stage], {"env": "prod"}, environment="prod")
        staging_again = await orchestrator.apply([stage], {"env": "staging"})

        assert staging.stages["database"].outputs["url"] == "postgres://localhost/staging"
        assert not prod.stages["database"].reused
        assert prod.stages["database"].outputs["url"] == "postgres://localhost/prod"
        assert staging_again.stages["database"].reused

    @pytest.mark.asyncio
    async def test_bindings_read_by_action_invalidate_reuse(self) -> None:
        def provision(ctx) -> dict:
            return {"region": ctx.bindings["region"]}

        stage = StageSpec("network", StageKind.PROVISION, provision, outputs=("region",))
        orchestrator = Orchestrator(ledger=InMemoryApplyLedger())

        await orchestrator.apply([stage], {"region": "eu-west-1"})
        moved = await orchestrator.apply([stage], {"region": "us-east-1"})

        assert not moved.stages["network"].reused
        assert moved.stages["network"].outputs == {"region": "us-east-1"}

    @pytest.mark.asyncio
    async def test_missing_artifact_named_in_failures(self) -> None:
        result = await Orchestrator().apply([
            StageSpec("verify", StageKind.VERIFY, ok(), inputs={"image": "artifact:app-zzz"}),
            StageSpec("report", StageKind.VERIFY, ok(), depends_on=frozenset({"verify"})),
            StageSpec("lint", StageKind.TEST, boom("style")),
        ])

        causes = {f.origin_stage_id: (f.type, f.cause_type) for f in result.failures}
        assert causes == {
            "verify": ("StageExecutionError", "ArtifactNotFoundError"),
            "lint": ("StageExecutionError", "RuntimeError"),
        }
        skipped = result.stages["report"].error
        assert skipped.type == "DependencyFailedError"
        assert skipped.cause_type == "ArtifactNotFoundError"

    @pytest.mark.asyncio
    async def test_reused_service_is_still_health_checked(self, gate) -> None:
        probes: list[int] = []

        def probe() -> bool:
            probes.append(1)
            return True

        stage = StageSpec("db", StageKind.PROVISION, ok(), service=ServiceSpec(probe=probe))
        orchestrator = Orchestrator(ledger=InMemoryApplyLedger(), health_gate=gate)

        await orchestrator.apply([stage])
        again = await orchestrator.apply([stage])
        assert again.stages["db"].reused
        assert again.stages["db"].health is HealthState.HEALTHY
        assert len(probes) == 2


class TestInvalidRuns:
    @pytest.mark.asyncio
    async def test_cycle_executes_nothing(self, orchestrator: Orchestrator) -> None:
        log: list[str] = []
        result = await orchestrator.apply([
            StageSpec("a", StageKind.TEST, ok(log=log), depends_on=frozenset({"b"})),
            StageSpec("b", StageKind.TEST, ok(log=log), depends_on=frozenset({"a"})),
        ])
        assert result.status is RunStatus.INVALID
        assert result.exit_code is ExitCode.INVALID_GRAPH
        assert result.failures[0].type == "CycleError"
        assert log == []

    @pytest.mark.asyncio
    async def test_dangling_reference(self, orchestrator: Orchestrator) -> None:
        result = await orchestrator.apply([
            StageSpec("deploy", StageKind.DEPLOY, ok(), depends_on=frozenset({"build"})),
        ])
        assert result.exit_code is ExitCode.INVALID_GRAPH
        assert result.failures[0].type == "DanglingReferenceError"

    @pytest.mark.asyncio
    async def test_unbound_binding(self, orchestrator: Orchestrator) -> None:
        result = await orchestrator.apply(
            [StageSpec("build", StageKind.BUILD, ok(), artifact="app-${revision}")], {}
        )
        assert result.status is RunStatus.INVALID
        assert result.failures[0].type == "UnboundVariableError"
        assert "revision" in result.failures[0].message


class TestCancellationAndStatus:
    @pytest.mark.asyncio
    async def test_cancel_skips_remaining_stages(self) -> None:
        started = asyncio.Event()
        log: list[str] = []

        async def long_running(ctx) -> dict:
            started.set()
            await ctx.cancel_event.wait()
            ctx.raise_if_cancelled()
            return {}

        orchestrator = Orchestrator()
        task = asyncio.create_task(
            orchestrator.apply(
                [
                    StageSpec("deploy", StageKind.DEPLOY, long_running),
                    StageSpec(
                        "verify", StageKind.VERIFY, ok(log=log), depends_on=frozenset({"deploy"})
                    ),
                ],
                run_id="run-1",
            )
        )
        await started.wait()
        assert orchestrator.active_runs == ["run-1"]
        assert orchestrator.cancel("run-1")

        result = await task
        assert result.status is RunStatus.CANCELLED
        assert result.exit_code is ExitCode.STAGE_FAILED
        assert result.stages["deploy"].error.type == "RunCancelledError"
        assert result.stages["verify"].state is StageState.SKIPPED
        assert result.stages["verify"].error.type == "RunCancelledError"
        assert log == []
        assert orchestrator.active_runs == []

    @pytest.mark.asyncio
    async def test_cancel_during_readiness_watch(self, gate) -> None:
        orchestrator = Orchestrator(health_gate=gate)

        async def never_ready() -> bool:
            orchestrator.cancel("r1")
            return False

        service = ServiceSpec(probe=never_ready, interval=1, timeout=5, max_attempts=5)
        result = await orchestrator.apply(
            [
                StageSpec("cache", StageKind.PROVISION, ok(), service=service),
                StageSpec("app", StageKind.DEPLOY, ok(), depends_on=frozenset({"cache"})),
            ],
            run_id="r1",
        )

        cache = result.stages["cache"]
        assert result.status is RunStatus.CANCELLED
        assert cache.state is StageState.SKIPPED
        assert cache.probe_attempts == 1
        assert cache.health is HealthState.FAILED
        assert result.stages["app"].state is StageState.SKIPPED

    def test_cancel_unknown_run(self) -> None:
        assert not Orchestrator().cancel("nope")

    @pytest.mark.asyncio
    async def test_status_live_and_stored(self) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def waits(ctx) -> dict:
            started.set()
            await release.wait()
            return {}

        store = InMemoryRunStore()
        orchestrator = Orchestrator(run_store=store)
        task = asyncio.create_task(
            orchestrator.apply([StageSpec("a", StageKind.TEST, waits)], run_id="run-2")
        )
        await started.wait()

        live = await orchestrator.status("run-2")
        assert live.status is RunStatus.RUNNING
        assert live.stages["a"].state is StageState.RUNNING

        release.set()
        await task
        stored = await Orchestrator(run_store=store).status("run-2")
        assert stored.status is RunStatus.SUCCEEDED
        assert stored.stages["a"].state is StageState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_status_unknown(self) -> None:
        with pytest.raises(RunNotFoundError):
            await Orchestrator().status("missing")

    @pytest.mark.asyncio
    async def test_runs_are_independent(self) -> None:
        stages = [StageSpec("a", StageKind.TEST, ok({"n": 1}))]
        orchestrator = Orchestrator()
        first, second = await asyncio.gather(
            orchestrator.apply(stages, run_id="r1"), orchestrator.apply(stages, run_id="r2")
        )
        assert first.succeeded and second.succeeded
        assert first.run_id != second.run_id
