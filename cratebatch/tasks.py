"""Named background jobs on the server's event loop.

The enrichment job runs here so the request that starts it can return at
once. Each job gets an ``asyncio.Event`` it polls between chunks.

Usage::

    jobs = get_task_manager()
    jobs.start("enrich", lambda cancel: scheduler.run_job(tracks, mode, cancel=cancel))
    jobs.stop("enrich")        # finish the chunks in flight, start no more
    await jobs.shutdown()      # lifespan exit: cancel everything
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

JobFactory = Callable[[asyncio.Event], Awaitable[object]]


@dataclass
class TaskInfo:
    name: str
    task: asyncio.Task
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: float = field(default_factory=time.time)


class BackgroundTaskManager:
    """At most one running task per name; finished tasks drop out on their own."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskInfo] = {}

    def is_running(self, name: str) -> bool:
        info = self._tasks.get(name)
        return info is not None and not info.task.done()

    def start(self, name: str, job: JobFactory) -> asyncio.Event:
        """Schedule ``job(cancel_event)`` under ``name`` and return the event.

        Raises RuntimeError when a task with that name is still running.
        """
        if self.is_running(name):
            raise RuntimeError(f"Task '{name}' is already running")

        cancel_event = asyncio.Event()

        async def run() -> None:
            logger.info("Background task '%s' started", name)
            try:
                await job(cancel_event)
            except asyncio.CancelledError:
                logger.info("Background task '%s' cancelled", name)
            except Exception:
                logger.exception("Background task '%s' failed", name)
            else:
                logger.info("Background task '%s' completed", name)
            finally:
                current = self._tasks.get(name)
                if current is not None and current.cancel_event is cancel_event:
                    del self._tasks[name]

        task = asyncio.get_running_loop().create_task(run(), name=name)
        self._tasks[name] = TaskInfo(name=name, task=task, cancel_event=cancel_event)
        return cancel_event

    def stop(self, name: str) -> bool:
        """Ask a task to wind down at its next check. False if nothing is running."""
        info = self._tasks.get(name)
        if info is None or info.task.done():
            return False
        info.cancel_event.set()
        logger.info("Stop requested for task '%s'", name)
        return True

    def cancel(self, name: str) -> bool:
        """Set the stop flag and interrupt the task's current await."""
        if not self.stop(name):
            return False
        self._tasks[name].task.cancel()
        return True

    async def shutdown(self, timeout: float = 10.0) -> None:
        pending = [info.task for info in self._tasks.values() if not info.task.done()]
        if not pending:
            return
        logger.info("Cancelling %d background task(s)", len(pending))
        for name in list(self._tasks):
            self.cancel(name)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                "%d task(s) still running after %.1fs: %s",
                len(still_running), timeout, [t.get_name() for t in still_running],
            )
        self._tasks.clear()


_task_manager = BackgroundTaskManager()


def get_task_manager() -> BackgroundTaskManager:
    """FastAPI dependency for the background task manager."""
    return _task_manager
