"""Observer implementations for stagegate events."""

from __future__ import annotations

from stagegate.kernel.logging import get_logger

from .events import Event, ProbeAttempted, StageFailed

logger = get_logger(__name__)


class LoggingObserver:
    """Observer that writes every event through loguru.

    Uses ``event.log_message()`` for consistent formatting. Failures are
    logged at WARNING, probe attempts at DEBUG, everything else at INFO.

    Example
    -------
        >>> from stagegate.kernel.orchestration.events import ALL_EVENTS
        >>> observer_manager.register(  # doctest: +SKIP
        ...     LoggingObserver().handle, event_types=ALL_EVENTS
        ... )
    """

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    async def handle(self, event: Event) -> None:
        message = event.log_message()
        if isinstance(event, StageFailed):
            logger.warning(message)
        elif isinstance(event, ProbeAttempted):
            if self.verbose:
                logger.debug(message)
        else:
            logger.info(message)
