"""Tests for stage records, health transitions and RunResult."""

import pytest

from stagegate.kernel.domain import (
    HealthState,
    RunResult,
    RunStatus,
    StageKind,
    StageOutcome,
    StageRecord,
    StageState,
)
from stagegate.kernel.domain.run import ErrorInfo, InvalidTransitionError
from stagegate.kernel.exceptions import (
    ArtifactNotFoundError,
    DependencyFailedError,
    ExitCode,
    HealthCheckTimeoutError,
    StageExecutionError,
    StageTimeoutError,
)


class TestStageRecord:
    def test_happy_path(self) -> None:
        record = StageRecord("build", StageKind.BUILD)
        record.mark_running()
        record.mark_succeeded({"image": "app:1"})
        assert record.state is StageState.SUCCEEDED
        assert record.outputs["image"] == "app:1"
        assert record.is_ready
        assert record.started_at is not None and record.ended_at is not None

    def test_terminal_states_are_final(self) -> None:
        record = StageRecord("build", StageKind.BUILD)
        record.mark_running()
        record.mark_failed(StageExecutionError("build", RuntimeError("boom")))
        with pytest.raises(InvalidTransitionError):
            record.mark_succeeded({})

    def test_pending_can_be_skipped(self) -> None:
        record = StageRecord("deploy", StageKind.DEPLOY)
        cause = DependencyFailedError("deploy", "build", StageExecutionError("build", ValueError()))
        record.mark_skipped(cause)
        assert record.state is StageState.SKIPPED
        assert record.error is cause

    def test_service_ready_only_when_healthy(self) -> None:
        record = StageRecord("db", StageKind.PROVISION, is_service=True)
        assert record.health is HealthState.UNKNOWN
        record.mark_running()
        record.set_health(HealthState.STARTING)
        record.mark_succeeded({})
        assert not record.is_ready
        record.set_health(HealthState.HEALTHY)
        assert record.is_ready

    def test_health_cannot_skip_starting(self) -> None:
        record = StageRecord("db", StageKind.PROVISION, is_service=True)
        with pytest.raises(InvalidTransitionError):
            record.set_health(HealthState.HEALTHY)

    def test_health_terminal(self) -> None:
        record = StageRecord("db", StageKind.PROVISION, is_service=True)
        record.set_health(HealthState.STARTING)
        record.set_health(HealthState.FAILED)
        with pytest.raises(InvalidTransitionError):
            record.set_health(HealthState.HEALTHY)


class TestRunResult:
    def _result(self, status: RunStatus, failures: list[ErrorInfo] | None = None) -> RunResult:
        return RunResult(run_id="r1", status=status, failures=failures or [])

    def test_exit_codes(self) -> None:
        assert self._result(RunStatus.SUCCEEDED).exit_code is ExitCode.SUCCESS
        assert self._result(RunStatus.INVALID).exit_code is ExitCode.INVALID_GRAPH
        assert self._result(RunStatus.CANCELLED).exit_code is ExitCode.STAGE_FAILED
        failed = ErrorInfo.from_error(StageExecutionError("build", RuntimeError("x")))
        assert self._result(RunStatus.FAILED, [failed]).exit_code is ExitCode.STAGE_FAILED

    def test_unhealthy_service_takes_precedence(self) -> None:
        failures = [
            ErrorInfo.from_error(StageExecutionError("build", RuntimeError("x"))),
            ErrorInfo.from_error(HealthCheckTimeoutError("db", 6)),
        ]
        assert self._result(RunStatus.FAILED, failures).exit_code is ExitCode.SERVICE_UNHEALTHY

    def test_error_info_origin(self) -> None:
        origin = StageExecutionError("build", RuntimeError("boom"))
        info = ErrorInfo.from_error(DependencyFailedError("deploy", "build", origin))
        assert info.type == "DependencyFailedError"
        assert info.origin_stage_id == "build"
        assert info.cause_type == "RuntimeError"

    def test_error_info_cause_type(self) -> None:
        missing = StageExecutionError("verify", ArtifactNotFoundError("app-zzz"))
        assert ErrorInfo.from_error(missing).cause_type == "ArtifactNotFoundError"
        timed_out = ErrorInfo.from_error(StageTimeoutError("build", 30))
        assert timed_out.cause_type == "TimeoutError"
        assert ErrorInfo.from_error(HealthCheckTimeoutError("db", 6)).cause_type is None

    def test_json_round_trip(self) -> None:
        record = StageRecord("build", StageKind.BUILD)
        record.mark_running()
        record.mark_succeeded({"image": "app:1"})
        result = RunResult(
            run_id="r1",
            status=RunStatus.SUCCEEDED,
            stages={"build": StageOutcome.from_record(record)},
        )
        restored = RunResult.model_validate_json(result.model_dump_json())
        assert restored == result
        assert restored.stages_in(StageState.SUCCEEDED) == ["build"]
