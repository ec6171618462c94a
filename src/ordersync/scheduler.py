"""Background task scheduler for the periodic sync jobs.

Each PeriodicTask runs its job, then waits ``interval`` seconds or until
the shared StopToken is set. Stopping is cooperative: a job that is
mid-run finishes its current item (order, chunk, conversation) and sees
the token at its next check. Per-run failures are logged and do not end
the loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


class StopToken:
    """Shared cancellation flag checked at loop-iteration and chunk boundaries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if stop was requested."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        return self._event.is_set()


@dataclass
class PeriodicTask:
    """A named job run every ``interval`` seconds.

    Attributes:
        name: Task name used in logs and as the asyncio task name.
        interval: Seconds between the end of one run and the start of the next.
        job: Coroutine factory receiving the StopToken.
        run_immediately: Run once at start instead of waiting an interval first.
    """

    name: str
    interval: float
    job: Callable[[StopToken], Awaitable[object]]
    run_immediately: bool = True


class TaskScheduler:
    """Owns the periodic tasks and their shared StopToken."""

    def __init__(self, tasks: list[PeriodicTask] | None = None) -> None:
        self._tasks: list[PeriodicTask] = list(tasks or [])
        self._running: dict[str, asyncio.Task] = {}
        self.stop_token = StopToken()

    def add(self, task: PeriodicTask) -> None:
        if self._running:
            raise RuntimeError("cannot add tasks to a running scheduler")
        self._tasks.append(task)

    @property
    def task_names(self) -> list[str]:
        return [t.name for t in self._tasks]

    @property
    def is_running(self) -> bool:
        return bool(self._running)

    async def _loop(self, task: PeriodicTask) -> None:
        if not task.run_immediately and await self.stop_token.wait(task.interval):
            return
        while not self.stop_token.is_set():
            try:
                result = await task.job(self.stop_token)
                logger.debug("scheduler.task_completed", task=task.name, result=result)
            except Exception:
                logger.warning("scheduler.task_failed", task=task.name, exc_info=True)
            if await self.stop_token.wait(task.interval):
                break
        logger.info("scheduler.task_stopped", task=task.name)

    def start(self) -> None:
        """Start every task as an asyncio task (idempotent)."""
        if self._running:
            return
        for task in self._tasks:
            self._running[task.name] = asyncio.create_task(self._loop(task), name=task.name)
        logger.info("scheduler.started", tasks=self.task_names)

    async def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the loops to reach their next boundary."""
        self.stop_token.set()
        if not self._running:
            return
        pending = list(self._running.values())
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning("scheduler.task_crashed", task=task.get_name(), error=str(task.exception()))
        self._running.clear()
        logger.info("scheduler.stopped", forced=len(still_running))
