"""Tracking of spawned accept and relay tasks so shutdown can drain them."""

import asyncio
from collections.abc import Coroutine
from typing import Any

from ..common.logging import get_logger

logger = get_logger(__name__)


class TaskSupervisor:
    """Owns every background task spawned during an orchestrator run.

    Tasks are independent: one task failing never cancels its siblings.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """Schedule coro as a supervised task.

        Args:
            coro: Coroutine to run
            name: Task name for debugging

        Returns:
            The created task

        Raises:
            RuntimeError: If the supervisor has already drained
        """
        if self._closed:
            coro.close()
            raise RuntimeError("TaskSupervisor is closed")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Supervised task failed",
                task=task.get_name(),
                error=repr(exc),
                exc_info=exc,
            )

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for every supervised task, including ones spawned while waiting.

        Args:
            timeout: Seconds to wait before cancelling stragglers

        Returns:
            Number of tasks that had to be cancelled
        """
        self._closed = True
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

        stragglers = set(self._tasks)
        if not stragglers:
            return 0

        logger.warning("Cancelling tasks that did not exit in time", count=len(stragglers))
        for task in stragglers:
            task.cancel()
        await asyncio.gather(*stragglers, return_exceptions=True)
        return len(stragglers)
