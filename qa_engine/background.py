"""
Best-Effort Background Work

Persistence writes, analytics events and offline replay run as tracked
asyncio tasks. A background task can neither block nor fail the
resolution that spawned it: failures are logged and dropped here.

`drain` waits for everything outstanding, which is what `shutdown` and
the tests use to reach a quiet state.
"""

import asyncio
from typing import Coroutine, Optional

import structlog


logger = structlog.get_logger(__name__)


class BackgroundTasks:
    """A set of fire-and-forget tasks that can be awaited as a group."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _guard(self, coro: Coroutine, name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("background_task_failed", task=name, error=str(e))

    def spawn(self, coro: Coroutine, name: str = "background") -> Optional[asyncio.Task]:
        """
        Schedule coro on the running loop.

        Without a running loop the work is discarded and logged.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("background_task_skipped", task=name, reason="no running event loop")
            return None

        task = loop.create_task(self._guard(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until no tasks remain, including ones spawned while waiting."""
        while self._tasks:
            done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            if pending:
                logger.warning("background_drain_timeout", pending=len(pending))
                return

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
