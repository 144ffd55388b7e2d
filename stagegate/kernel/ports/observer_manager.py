"""Observer Manager Port - interface for lifecycle event observation.

Observers are read-only: they see every event the orchestrator emits but
cannot influence execution, and an observer failure must never fail a run.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from stagegate.kernel.orchestration.events.events import Event

ObserverFunc = Callable[[Event], None]
AsyncObserverFunc = Callable[[Event], Any]  # Returns awaitable


class Observer(Protocol):
    """Protocol for observers that monitor events."""

    async def handle(self, event: Event) -> None:
        """Handle an event (read-only, no return value)."""
        ...


class ObserverManager(Protocol):
    """Port interface for event observation systems."""

    @abstractmethod
    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
    ) -> str:
        """Register an observer, optionally filtered to some event types.

        Returns
        -------
            str: The ID of the registered observer
        """
        ...

    @abstractmethod
    def unregister(self, handler_id: str) -> bool:
        """Unregister an observer by ID; return True if it was registered."""
        ...

    @abstractmethod
    async def notify(self, event: Event) -> None:
        """Deliver *event* to every interested observer, isolating their failures."""
        ...

    @abstractmethod
    def __len__(self) -> int:
        """Return number of registered observers."""
        ...
