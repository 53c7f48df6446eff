"""Fire-and-forget persistence helpers."""

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class BackgroundWrites:
    """Schedules best-effort writes without blocking the caller.

    Each coroutine runs as a tracked asyncio task. A failure is logged and
    dropped; it never reaches the code that scheduled the write.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    def submit(self, coro: Coroutine[Any, Any, Any], *, description: str = "background write") -> asyncio.Task:
        """Schedule ``coro`` on the running loop."""
        task = asyncio.create_task(self._run(coro, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], description: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failures += 1
            logger.warning("%s failed, dropping it", description, exc_info=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
