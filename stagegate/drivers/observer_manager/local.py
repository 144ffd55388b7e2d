"""Local Observer Manager - in-process implementation of the observer port.

Provides event type filtering, bounded concurrent delivery, per-observer
timeouts and fault isolation: an observer that raises or hangs is logged and
dropped for that event, never propagated into the run.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, cast

from pydantic import BaseModel, ConfigDict, Field

from stagegate.kernel.logging import get_logger
from stagegate.kernel.utils.callables import is_async_callable

if TYPE_CHECKING:
    from stagegate.kernel.orchestration.events.events import Event
    from stagegate.kernel.ports.observer_manager import (
        AsyncObserverFunc,
        Observer,
        ObserverFunc,
    )

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENT_OBSERVERS = 10
DEFAULT_OBSERVER_TIMEOUT = 5.0
DEFAULT_MAX_SYNC_WORKERS = 4


class FunctionObserver:
    """Wrapper to make plain functions implement the Observer protocol."""

    def __init__(self, func: ObserverFunc | AsyncObserverFunc, executor: ThreadPoolExecutor):
        self._func = func
        self._executor = executor
        self.__name__ = getattr(func, "__name__", "anonymous_observer")

    async def handle(self, event: Event) -> None:
        if is_async_callable(self._func):
            await self._func(event)
        else:
            # Sync observers run in the pool so they cannot block the loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self._executor, self._func, event)


class ObserverRegistrationConfig(BaseModel):
    """Validated configuration for one observer registration."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    observer_id: str | None = None
    event_types: frozenset[type] | None = None
    timeout: float | None = Field(None, gt=0)


def _normalize_event_types(
    event_types: Iterable[type[Event]] | type[Event] | None,
) -> frozenset[type] | None:
    if event_types is None:
        return None
    if isinstance(event_types, type):
        return frozenset({event_types})
    return frozenset(event_types)


class LocalObserverManager:
    """In-process observer manager.

    Parameters
    ----------
    max_concurrent_observers : int
        Upper bound on observers handling events at the same time
    observer_timeout : float
        Seconds an observer may spend on one event
    max_sync_workers : int
        Thread pool size for synchronous observer functions
    """

    def __init__(
        self,
        max_concurrent_observers: int = DEFAULT_MAX_CONCURRENT_OBSERVERS,
        observer_timeout: float = DEFAULT_OBSERVER_TIMEOUT,
        max_sync_workers: int = DEFAULT_MAX_SYNC_WORKERS,
    ) -> None:
        self._timeout = observer_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_observers)
        self._executor = ThreadPoolExecutor(max_workers=max_sync_workers)
        self._executor_shutdown = False

        self._handlers: dict[str, Observer] = {}
        self._event_filters: dict[str, frozenset[type] | None] = {}
        self._observer_timeouts: dict[str, float | None] = {}

    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
        timeout: float | None = None,
    ) -> str:
        """Register an observer with optional event type filtering.

        Raises
        ------
        ValueError
            If *observer_id* is already registered
        TypeError
            If *handler* is neither callable nor an Observer
        """
        config = ObserverRegistrationConfig(
            observer_id=observer_id,
            event_types=_normalize_event_types(event_types),
            timeout=timeout,
        )
        resolved_id = config.observer_id or str(uuid.uuid4())
        if resolved_id in self._handlers:
            raise ValueError(f"Observer '{resolved_id}' already registered")

        if hasattr(handler, "handle"):
            observer = cast("Observer", handler)
        elif callable(handler):
            observer = FunctionObserver(handler, self._executor)
        else:
            raise TypeError(
                f"Observer must be callable or implement Observer protocol, got {type(handler)}"
            )

        self._handlers[resolved_id] = observer
        self._event_filters[resolved_id] = config.event_types
        self._observer_timeouts[resolved_id] = config.timeout
        return resolved_id

    def unregister(self, handler_id: str) -> bool:
        found = self._handlers.pop(handler_id, None) is not None
        self._event_filters.pop(handler_id, None)
        self._observer_timeouts.pop(handler_id, None)
        return found

    def _interested(self, event: Event) -> dict[str, Observer]:
        return {
            observer_id: observer
            for observer_id, observer in self._handlers.items()
            if (filters := self._event_filters.get(observer_id)) is None
            or isinstance(event, tuple(filters))
        }

    async def _deliver(self, observer_id: str, observer: Observer, event: Event) -> None:
        timeout = self._observer_timeouts.get(observer_id) or self._timeout
        async with self._semaphore:
            try:
                async with asyncio.timeout(timeout):
                    await observer.handle(event)
            except TimeoutError:
                logger.warning(
                    "Observer {observer} timed out after {timeout}s on {event}",
                    observer=observer_id,
                    timeout=timeout,
                    event=type(event).__name__,
                )
            except Exception as e:
                logger.warning(
                    "Observer {observer} failed for {event}: {error}",
                    observer=observer_id,
                    event=type(event).__name__,
                    error=e,
                )

    async def notify(self, event: Event) -> None:
        """Deliver *event* to every interested observer.

        Observer errors and timeouts are logged and never raised.
        """
        observers = self._interested(event)
        if not observers:
            return
        await asyncio.gather(
            *(self._deliver(oid, observer, event) for oid, observer in observers.items())
        )

    def clear(self) -> None:
        """Remove all registered observers."""
        self._handlers.clear()
        self._event_filters.clear()
        self._observer_timeouts.clear()

    async def close(self) -> None:
        """Remove observers and release the sync worker pool."""
        self.clear()
        if not self._executor_shutdown:
            self._executor.shutdown(wait=True)
            self._executor_shutdown = True

    def __len__(self) -> int:
        return len(self._handlers)

    async def __aenter__(self) -> LocalObserverManager:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
