"""Port interface for stage actions.

An action performs a stage's external work (build an image, create a
resource, run tests) and returns a mapping of the outputs the stage declares.
Coroutine functions are awaited; plain functions run in a worker thread with
the caller's context variables copied.
"""

from abc import abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from stagegate.kernel.orchestration.models import StageContext


@runtime_checkable
class StageAction(Protocol):
    """External action for one stage."""

    @abstractmethod
    async def __call__(self, ctx: "StageContext") -> Mapping[str, Any] | None:
        """Run the action and return declared outputs (None means no outputs)."""
        ...
