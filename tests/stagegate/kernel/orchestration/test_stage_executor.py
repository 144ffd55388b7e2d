"""Tests for InputResolver and StageExecutor."""

import asyncio

import pytest

from stagegate.drivers.actions import CommandAction
from stagegate.drivers.apply_ledger import InMemoryApplyLedger
from stagegate.kernel.domain import (
    Artifact,
    HealthState,
    ServiceSpec,
    StageKind,
    StageRecord,
    StageSpec,
    StageState,
)
from stagegate.kernel.exceptions import (
    ArtifactNotFoundError,
    HealthCheckTimeoutError,
    InputWiringError,
    RunCancelledError,
    StageExecutionError,
    StageTimeoutError,
    UnboundVariableError,
)
from stagegate.kernel.orchestration.components import (
    ArtifactPromoter,
    HealthGate,
    InputResolver,
    StageExecutor,
    fingerprint,
)
from stagegate.kernel.orchestration.events import StageCompleted, StageFailed, StageStarted


def succeeded(stage_id: str, outputs: dict) -> StageRecord:
    record = StageRecord(stage_id, StageKind.PROVISION)
    record.mark_running()
    record.mark_succeeded(outputs)
    return record


class TestInputResolver:
    @pytest.fixture
    def promoter(self) -> ArtifactPromoter:
        return ArtifactPromoter()

    @pytest.fixture
    def resolver(self, promoter) -> InputResolver:
        return InputResolver(promoter)

    @pytest.mark.asyncio
    async def test_all_reference_kinds(self, resolver, promoter) -> None:
        await promoter.promote("app-abc", lambda: {"image": "app:abc"})
        stage = StageSpec(
            "deploy",
            StageKind.DEPLOY,
            depends_on=frozenset({"db"}),
            inputs={
                "db_url": "db.url",
                "image": "artifact:app-${revision}",
                "region": "var:region",
            },
        )
        inputs = await resolver.resolve_inputs(
            stage,
            {"db": succeeded("db", {"url": "postgres://db"})},
            {"revision": "abc", "region": "eu-west-1"},
        )
        assert inputs["db_url"] == "postgres://db"
        assert isinstance(inputs["image"], Artifact)
        assert inputs["image"].payload["image"] == "app:abc"
        assert inputs["region"] == "eu-west-1"

    @pytest.mark.asyncio
    async def test_upstream_not_succeeded(self, resolver) -> None:
        pending = StageRecord("db", StageKind.PROVISION)
        stage = StageSpec("app", StageKind.DEPLOY, inputs={"url": "db.url"})
        with pytest.raises(InputWiringError, match="has not succeeded"):
            await resolver.resolve_inputs(stage, {"db": pending}, {})

    @pytest.mark.asyncio
    async def test_output_not_published(self, resolver) -> None:
        stage = StageSpec("app", StageKind.DEPLOY, inputs={"url": "db.url"})
        with pytest.raises(InputWiringError, match="did not produce"):
            await resolver.resolve_inputs(stage, {"db": succeeded("db", {})}, {})

    @pytest.mark.asyncio
    async def test_unbound_variable(self, resolver) -> None:
        stage = StageSpec("app", StageKind.DEPLOY, inputs={"region": "var:region"})
        with pytest.raises(UnboundVariableError):
            await resolver.resolve_inputs(stage, {}, {})

    @pytest.mark.asyncio
    async def test_missing_artifact(self, resolver) -> None:
        stage = StageSpec("verify", StageKind.VERIFY, inputs={"image": "artifact:app-zzz"})
        with pytest.raises(ArtifactNotFoundError):
            await resolver.resolve_inputs(stage, {}, {})

    def test_params_and_identity(self) -> None:
        stage = StageSpec(
            "build", StageKind.BUILD, params={"tag": "${revision}"}, artifact="app-${revision}"
        )
        assert InputResolver.resolve_params(stage, {"revision": "abc"}) == {"tag": "abc"}
        assert InputResolver.artifact_identity(stage, {"revision": "abc"}) == "app-abc"


class TestFingerprint:
    def test_stable_and_sensitive(self) -> None:
        stage = StageSpec("db", StageKind.PROVISION)
        assert fingerprint(stage, {"a": 1}, {"size": "s"}) == fingerprint(
            stage, {"a": 1}, {"size": "s"}
        )
        assert fingerprint(stage, {"a": 1}, {"size": "s"}) != fingerprint(
            stage, {"a": 2}, {"size": "s"}
        )

    def test_bindings_and_action_change_digest(self) -> None:
        stage = StageSpec("db", StageKind.PROVISION, CommandAction("create-db ${env}"))
        staging = fingerprint(stage, {}, {}, {"env": "staging"})

        assert staging == fingerprint(stage, {}, {}, {"env": "staging"})
        assert staging != fingerprint(stage, {}, {}, {"env": "prod"})
        renamed = StageSpec("db", StageKind.PROVISION, CommandAction("create-db --big ${env}"))
        assert staging != fingerprint(renamed, {}, {}, {"env": "staging"})

    def test_artifact_inputs_by_identity(self) -> None:
        stage = StageSpec("verify", StageKind.VERIFY)
        first = Artifact("app-1", "build", {"image": "x"})
        again = Artifact("app-1", "build", {"image": "x"})
        assert fingerprint(stage, {"image": first}, {}) == fingerprint(stage, {"image": again}, {})


class TestStageExecutor:
    @pytest.fixture
    def ledger(self) -> InMemoryApplyLedger:
        return InMemoryApplyLedger()

    @pytest.fixture
    def executor(self, gate: HealthGate, recorder, ledger) -> StageExecutor:
        promoter = ArtifactPromoter(observer_manager=recorder)
        return StageExecutor(
            InputResolver(promoter), promoter, gate, ledger=ledger, observer_manager=recorder
        )

    async def _execute(self, executor: StageExecutor, stage: StageSpec, **kwargs) -> StageRecord:
        record = StageRecord(stage.id, stage.kind, is_service=stage.is_service)
        return await executor.execute(
            stage,
            record,
            run_id="r1",
            records=kwargs.pop("records", {}),
            bindings=kwargs.pop("bindings", {}),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_success_publishes_outputs(self, executor, recorder) -> None:
        async def action(ctx) -> dict:
            return {"url": f"postgres://{ctx.params['name']}"}

        stage = StageSpec(
            "db", StageKind.PROVISION, action, outputs=("url",), params={"name": "${env}"}
        )
        record = await self._execute(executor, stage, bindings={"env": "staging"})

        assert record.state is StageState.SUCCEEDED
        assert record.outputs == {"url": "postgres://staging"}
        assert [type(e) for e in recorder.events] == [StageStarted, StageCompleted]

    @pytest.mark.asyncio
    async def test_sync_action_receives_context(self, executor) -> None:
        seen = {}

        def action(ctx) -> dict:
            seen.update(run_id=ctx.run_id, stage_id=ctx.stage_id)
            return {"ok": True}

        record = await self._execute(executor, StageSpec("lint", StageKind.TEST, action))
        assert record.state is StageState.SUCCEEDED
        assert seen == {"run_id": "r1", "stage_id": "lint"}

    @pytest.mark.asyncio
    async def test_no_action_is_a_noop(self, executor) -> None:
        record = await self._execute(executor, StageSpec("gate", StageKind.VERIFY))
        assert record.state is StageState.SUCCEEDED
        assert record.outputs == {}

    @pytest.mark.asyncio
    async def test_action_error_is_wrapped(self, executor, recorder) -> None:
        def action(ctx) -> dict:
            raise RuntimeError("disk full")

        record = await self._execute(executor, StageSpec("build", StageKind.BUILD, action))
        assert record.state is StageState.FAILED
        assert isinstance(record.error, StageExecutionError)
        assert isinstance(record.error.cause, RuntimeError)
        assert recorder.of_type(StageFailed)[0].name == "build"

    @pytest.mark.asyncio
    async def test_missing_declared_output(self, executor) -> None:
        stage = StageSpec("db", StageKind.PROVISION, lambda ctx: {}, outputs=("url",))
        record = await self._execute(executor, stage)
        assert record.state is StageState.FAILED
        assert "url" in str(record.error)

    @pytest.mark.asyncio
    async def test_non_mapping_result(self, executor) -> None:
        record = await self._execute(executor, StageSpec("x", StageKind.TEST, lambda ctx: 42))
        assert record.state is StageState.FAILED
        assert isinstance(record.error.cause, TypeError)

    @pytest.mark.asyncio
    async def test_timeout(self, executor) -> None:
        async def slow(ctx) -> dict:
            await asyncio.sleep(5)
            return {}

        stage = StageSpec("slow", StageKind.TEST, slow, timeout=0.02)
        record = await self._execute(executor, stage)
        assert isinstance(record.error, StageTimeoutError)

    @pytest.mark.asyncio
    async def test_default_timeout(self, gate) -> None:
        async def slow(ctx) -> dict:
            await asyncio.sleep(5)
            return {}

        promoter = ArtifactPromoter()
        executor = StageExecutor(
            InputResolver(promoter), promoter, gate, default_stage_timeout=0.02
        )
        record = await self._execute(executor, StageSpec("slow", StageKind.TEST, slow))
        assert isinstance(record.error, StageTimeoutError)

    @pytest.mark.asyncio
    async def test_unresolvable_input_fails_stage(self, executor) -> None:
        stage = StageSpec("app", StageKind.DEPLOY, lambda ctx: {}, inputs={"r": "var:region"})
        record = await self._execute(executor, stage)
        assert isinstance(record.error, StageExecutionError)
        assert isinstance(record.error.cause, UnboundVariableError)

    @pytest.mark.asyncio
    async def test_ledger_reuse(self, executor, ledger) -> None:
        calls = []

        def action(ctx) -> dict:
            calls.append(ctx.run_id)
            return {"url": "postgres://db"}

        stage = StageSpec("db", StageKind.PROVISION, action, outputs=("url",))
        first = await self._execute(executor, stage)
        second = await self._execute(executor, stage)

        assert len(calls) == 1
        assert not first.reused
        assert second.reused
        assert second.outputs == first.outputs
        assert len(ledger) == 1

    @pytest.mark.asyncio
    async def test_ledger_not_used_for_tests(self, executor, ledger) -> None:
        calls = []
        stage = StageSpec("unit", StageKind.TEST, lambda ctx: calls.append(1) or {})
        await self._execute(executor, stage)
        await self._execute(executor, stage)
        assert len(calls) == 2
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_changed_params_are_not_reused(self, executor) -> None:
        calls = []
        stage = StageSpec(
            "db", StageKind.PROVISION, lambda ctx: calls.append(1) or {}, params={"size": "${size}"}
        )
        await self._execute(executor, stage, bindings={"size": "small"})
        await self._execute(executor, stage, bindings={"size": "large"})
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_failed_apply_not_recorded(self, executor, ledger) -> None:
        def action(ctx) -> dict:
            raise RuntimeError("quota")

        await self._execute(executor, StageSpec("db", StageKind.PROVISION, action))
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_build_promotes_artifact(self, executor) -> None:
        calls = []

        def build(ctx) -> dict:
            calls.append(1)
            return {"image": "registry/app:abc"}

        stage = StageSpec("build", StageKind.BUILD, build, artifact="app-${revision}")
        first = await self._execute(executor, stage, bindings={"revision": "abc"})
        second = await self._execute(executor, stage, bindings={"revision": "abc"})

        assert len(calls) == 1
        assert first.outputs == {"image": "registry/app:abc", "artifact_id": "app-abc"}
        assert second.reused and second.outputs == first.outputs

    @pytest.mark.asyncio
    async def test_service_healthy(self, executor, fake_clock) -> None:
        probe_results = iter([False, True])
        service = ServiceSpec(probe=lambda: next(probe_results), interval=3, timeout=1)
        stage = StageSpec("db", StageKind.PROVISION, lambda ctx: {}, service=service)

        record = await self._execute(executor, stage)
        assert record.state is StageState.SUCCEEDED
        assert record.health is HealthState.HEALTHY
        assert record.is_ready
        assert fake_clock.sleeps == [3]

    @pytest.mark.asyncio
    async def test_service_unhealthy(self, executor, ledger) -> None:
        service = ServiceSpec(probe=lambda: False, interval=1, timeout=1, max_attempts=2)
        stage = StageSpec("db", StageKind.PROVISION, lambda ctx: {}, service=service)

        record = await self._execute(executor, stage)
        assert record.state is StageState.FAILED
        assert record.health is HealthState.FAILED
        assert isinstance(record.error, HealthCheckTimeoutError)
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_cancelled_before_action(self, executor) -> None:
        cancel = asyncio.Event()
        cancel.set()
        calls = []
        stage = StageSpec("x", StageKind.TEST, lambda ctx: calls.append(1) or {})

        record = await self._execute(executor, stage, cancel_event=cancel)
        assert record.state is StageState.SKIPPED
        assert isinstance(record.error, RunCancelledError)
        assert calls == []

    @pytest.mark.asyncio
    async def test_semaphore_bounds_actions(self, executor) -> None:
        running = 0
        peak = 0

        async def action(ctx) -> dict:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return {}

        semaphore = asyncio.Semaphore(2)
        await asyncio.gather(*(
            self._execute(executor, StageSpec(f"s{i}", StageKind.TEST, action), semaphore=semaphore)
            for i in range(6)
        ))
        assert peak == 2
