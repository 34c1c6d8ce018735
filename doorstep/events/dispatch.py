import asyncio
import logging
from typing import Awaitable, Set

from doorstep.core.errors import NotificationDeliveryFailure

log = logging.getLogger(__name__)


class SideEffectDispatcher:
    """
    Runs post-commit side effects (inbox rows, realtime pushes) as background
    tasks. `fire()` returns immediately and never raises; failures are logged.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def fire(self, coro: Awaitable, label: str = "side effect") -> None:
        try:
            task = asyncio.ensure_future(coro)
        except Exception:
            log.warning("Could not schedule %s", label, exc_info=True)
            return
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, label))

    def _finished(self, task: asyncio.Task, label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            failure = NotificationDeliveryFailure(f"{label} failed: {exc}")
            log.warning("%s", failure, exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Waits for every scheduled side effect, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
