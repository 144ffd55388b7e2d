"""Shared fixtures for the stagegate test suite.

- fake_clock: deterministic sleep/clock pair for health gate timing
- recorder: observer manager that keeps every event
- gate: HealthGate wired to the fake clock and the recorder
"""

import asyncio

import pytest

from stagegate.drivers.observer_manager import LocalObserverManager
from stagegate.kernel.orchestration.components import HealthGate


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class EventRecorder(LocalObserverManager):
    """LocalObserverManager that also keeps every notified event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list = []

    async def notify(self, event) -> None:
        self.events.append(event)
        await super().notify(event)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def gate(fake_clock: FakeClock, recorder: EventRecorder) -> HealthGate:
    return HealthGate(recorder, sleep=fake_clock.sleep, clock=fake_clock)
