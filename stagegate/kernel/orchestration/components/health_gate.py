"""Health gate: bounded readiness polling for service stages.

A watch runs the service's probe up to ``max_attempts`` times, ``interval``
seconds apart, each attempt bounded by ``timeout``. The first success is
Healthy immediately; running out of attempts is Failed. A probe that raises
or times out is a failed attempt, never a fatal error. A complete watch is
therefore bounded by ``max_attempts * (interval + timeout)``.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stagegate.kernel.ports.observer_manager import ObserverManager

from stagegate.kernel.domain.run import HealthState, StageRecord
from stagegate.kernel.domain.stage import ServiceSpec
from stagegate.kernel.exceptions import HealthCheckTimeoutError, RunCancelledError
from stagegate.kernel.logging import get_logger
from stagegate.kernel.orchestration.events import ProbeAttempted, ServiceHealthChanged
from stagegate.kernel.utils.callables import call_maybe_async

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class HealthVerdict:
    """Terminal outcome of a watch.

    Attributes
    ----------
    stage_id : str
        Watched service
    state : HealthState
        HEALTHY or FAILED
    attempts : int
        Probe attempts made
    elapsed : float
        Seconds from the start of the watch to the verdict
    last_error : BaseException | None
        Error raised by the last failed attempt, if any
    """

    stage_id: str
    state: HealthState
    attempts: int
    elapsed: float
    last_error: BaseException | None = None

    @property
    def healthy(self) -> bool:
        return self.state is HealthState.HEALTHY

    def to_error(self) -> HealthCheckTimeoutError:
        return HealthCheckTimeoutError(self.stage_id, self.attempts, self.last_error)


class HealthGate:
    """Polls readiness probes and reports terminal verdicts.

    ``watch`` is awaited by the stage's own task, so a slow service only
    delays its dependents; ``start`` wraps the same watch in a task for callers
    that want to register interest in the verdict and do other work meanwhile.

    Parameters
    ----------
    observer_manager : ObserverManager | None
        Receives ServiceHealthChanged and ProbeAttempted events
    sleep : Callable[[float], Awaitable[Any]]
        Sleep used between attempts (injectable for deterministic tests)
    clock : Callable[[], float]
        Monotonic clock used to measure ``elapsed``
    """

    def __init__(
        self,
        observer_manager: "ObserverManager | None" = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._observer_manager = observer_manager
        self._sleep = sleep
        self._clock = clock

    async def _notify(self, event: Any) -> None:
        if self._observer_manager is not None:
            await self._observer_manager.notify(event)

    async def _attempt(self, probe: Callable[[], Any], timeout: float) -> tuple[bool, Any]:
        try:
            async with asyncio.timeout(timeout):
                return bool(await call_maybe_async(probe)), None
        except TimeoutError:
            return False, TimeoutError(f"probe exceeded {timeout}s")
        except Exception as e:
            return False, e

    async def _abandon(
        self, stage_id: str, record: StageRecord | None, attempts: int, max_attempts: int
    ) -> None:
        """Settle a cancelled watch on FAILED."""
        if record is None or record.health is not HealthState.STARTING:
            return
        record.set_health(HealthState.FAILED)
        await self._notify(
            ServiceHealthChanged(stage_id, HealthState.FAILED, attempts, max_attempts)
        )
        logger.info(
            "Readiness watch for '{stage}' abandoned after {attempts} attempt(s): run cancelled",
            stage=stage_id,
            attempts=attempts,
        )

    async def watch(
        self,
        stage_id: str,
        probe: Callable[[], Any],
        interval: float,
        timeout: float,
        max_attempts: int,
        *,
        record: StageRecord | None = None,
        cancel_event: asyncio.Event | None = None,
        run_id: str = "-",
    ) -> HealthVerdict:
        """Poll *probe* until it succeeds or the attempt budget is exhausted.

        Parameters
        ----------
        stage_id : str
            Service being watched (used for events and errors)
        probe : Callable[[], Any]
            Sync or async readiness check
        interval : float
            Seconds between attempts
        timeout : float
            Upper bound for each attempt
        max_attempts : int
            Attempt budget
        record : StageRecord | None
            Record whose health state machine is advanced by the watch
        cancel_event : asyncio.Event | None
            Checked before every attempt
        run_id : str
            Run the watch belongs to (reported on cancellation)

        Returns
        -------
        HealthVerdict
            HEALTHY on the first successful attempt, FAILED after ``max_attempts``

        Raises
        ------
        RunCancelledError
            If *cancel_event* is set before an attempt; the record's health
            is moved to FAILED first so it ends in a terminal state
        """
        started = self._clock()
        last_error: BaseException | None = None

        if record is not None:
            record.set_health(HealthState.STARTING)
        await self._notify(ServiceHealthChanged(stage_id, HealthState.STARTING, 0, max_attempts))

        for attempt in range(1, max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                await self._abandon(stage_id, record, attempt - 1, max_attempts)
                raise RunCancelledError(run_id)

            healthy, error = await self._attempt(probe, timeout)
            if record is not None:
                record.probe_attempts = attempt
            await self._notify(
                ProbeAttempted(stage_id, attempt, healthy, str(error) if error else None)
            )

            if healthy:
                if record is not None:
                    record.set_health(HealthState.HEALTHY)
                await self._notify(
                    ServiceHealthChanged(stage_id, HealthState.HEALTHY, attempt, max_attempts)
                )
                logger.debug(
                    "Service '{stage}' healthy after {attempt} attempt(s)",
                    stage=stage_id,
                    attempt=attempt,
                )
                return HealthVerdict(
                    stage_id, HealthState.HEALTHY, attempt, self._clock() - started
                )

            last_error = error or last_error
            logger.debug(
                "Service '{stage}' not ready ({attempt}/{max_attempts}): {error}",
                stage=stage_id,
                attempt=attempt,
                max_attempts=max_attempts,
                error=error or "probe returned false",
            )
            if attempt < max_attempts:
                await self._sleep(interval)

        if record is not None:
            record.set_health(HealthState.FAILED)
        await self._notify(
            ServiceHealthChanged(stage_id, HealthState.FAILED, max_attempts, max_attempts)
        )
        logger.warning(
            "Service '{stage}' failed readiness after {attempts} attempt(s)",
            stage=stage_id,
            attempts=max_attempts,
        )
        return HealthVerdict(
            stage_id, HealthState.FAILED, max_attempts, self._clock() - started, last_error
        )

    async def watch_service(
        self,
        stage_id: str,
        service: ServiceSpec,
        *,
        record: StageRecord | None = None,
        cancel_event: asyncio.Event | None = None,
        run_id: str = "-",
    ) -> HealthVerdict:
        """Watch using the parameters of a ServiceSpec."""
        return await self.watch(
            stage_id,
            service.probe,
            service.interval,
            service.timeout,
            service.max_attempts,
            record=record,
            cancel_event=cancel_event,
            run_id=run_id,
        )

    def start(
        self,
        stage_id: str,
        service: ServiceSpec,
        *,
        record: StageRecord | None = None,
        cancel_event: asyncio.Event | None = None,
        run_id: str = "-",
    ) -> "asyncio.Task[HealthVerdict]":
        """Begin a watch in the background and return the task resolving to its verdict."""
        return asyncio.create_task(
            self.watch_service(
                stage_id, service, record=record, cancel_event=cancel_event, run_id=run_id
            ),
            name=f"health:{stage_id}",
        )
