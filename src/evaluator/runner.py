"""
Bounded pool of background evaluations.

Each submitted evaluation runs as its own asyncio task, at most
``concurrency`` at a time. The returned task is the completion signal.
Evaluations are never cancelled by the pool; shutting down waits for them.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from loguru import logger


class TaskRunner:
    """Runs one coroutine per task ID behind a semaphore."""

    def __init__(self, concurrency: int = 4):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._running: dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def pending(self) -> int:
        """Evaluations submitted and not yet finished."""
        return len(self._running)

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    def submit(self, task_id: str, work: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """
        Schedule ``work()`` for ``task_id``. Must be called from a running loop.

        Raises:
            RuntimeError: after shutdown
            ValueError: if the same task ID is still running
        """
        if self._closed:
            raise RuntimeError("TaskRunner is shut down")
        if task_id in self._running:
            raise ValueError(f"Task {task_id} is already running")

        async def run():
            async with self._semaphore:
                return await work()

        future = asyncio.create_task(run(), name=f"evaluation-{task_id}")
        self._running[task_id] = future
        future.add_done_callback(lambda done: self._finished(task_id, done))
        return future

    def _finished(self, task_id: str, future: asyncio.Task) -> None:
        if self._running.get(task_id) is future:
            del self._running[task_id]
        if future.cancelled():
            logger.warning(f"Evaluation {task_id} was cancelled")
            return
        error = future.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Evaluation {task_id} crashed: {error}")

    async def wait(self, task_id: str) -> Optional[Any]:
        """Wait for a running evaluation. Returns immediately if none is running."""
        future = self._running.get(task_id)
        if future is None:
            return None
        return await future

    async def drain(self) -> None:
        """Wait until every submitted evaluation has finished."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop accepting evaluations and wait for the outstanding ones to finish."""
        self._closed = True
        if self._running:
            logger.info(f"Waiting for {len(self._running)} unfinished evaluations")
        await self.drain()
