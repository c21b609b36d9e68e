"""Detached task tracking for backstage.

Usage increments run as fire-and-forget tasks so a chat response never
waits on a storage round trip. BackgroundTasks keeps a strong
reference to every task until it finishes and lets shutdown drain them.
"""

import asyncio
from typing import Coroutine, Set

import structlog

from .exceptions import BackstageError

logger = structlog.get_logger("backstage.bot")


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    # A locked or busy database is expected to clear on its own
    if isinstance(exc, BackstageError) and exc.is_transient:
        log = logger.warning
    else:
        log = logger.error
    log(
        "background_task_failed",
        task=task.get_name(),
        error=str(exc),
        exc_type=type(exc).__name__,
    )


class BackgroundTasks:
    """Owns the set of in-flight detached tasks.

    Tasks are never retried. On drain, whatever has not finished by
    the timeout is cancelled, so each scheduled unit of work runs at
    most once.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def spawn(self, coro: Coroutine, *, name: str = "background") -> asyncio.Task:
        """Schedule a coroutine without waiting for it."""
        if self._closed:
            coro.close()
            raise RuntimeError("BackgroundTasks is draining, refusing new work")
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(log_task_exception)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight tasks, cancelling any still running at the timeout."""
        self._closed = True
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("background_tasks_draining", pending=len(tasks))
        done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("background_tasks_dropped", dropped=len(still_running))
        logger.info("background_tasks_drained", completed=len(done))
