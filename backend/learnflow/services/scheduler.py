"""
Periodic job scheduling on the asyncio event loop.

Jobs run every `interval` seconds (first run one interval after
scheduling). A failing callback is logged and the job keeps running;
cancelling the handle stops it.

Example:
    scheduler = AsyncioScheduler()
    handle = scheduler.schedule_every(900, check_quota, name="quota_check")
    ...
    handle.cancel()
    await handle.wait()
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Awaitable[Any]]
SleepFunc = Callable[[float], Awaitable[None]]


class JobHandle:
    """
    Handle to a scheduled periodic job.

    Attributes:
        name: Job name
        interval: Seconds between runs
        runs: Number of completed runs (successful or not)
    """

    def __init__(self, name: str, interval: float):
        self.name = name
        self.interval = interval
        self.runs = 0
        self.task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()

    def cancel(self) -> None:
        """Stop the job. Safe to call more than once."""
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait(self) -> None:
        """Wait for a cancelled job to finish unwinding."""
        if self.task is None:
            return
        try:
            await self.task
        except asyncio.CancelledError:
            pass


class Scheduler(Protocol):
    """Interval scheduler interface."""

    def schedule_every(self, interval: float, callback: JobCallback, name: str) -> JobHandle:
        ...


class AsyncioScheduler:
    """
    Scheduler backed by one asyncio task per job.

    Must be used from inside a running event loop.
    """

    def __init__(self, sleep: SleepFunc = asyncio.sleep):
        self.sleep = sleep

    def schedule_every(self, interval: float, callback: JobCallback, name: str) -> JobHandle:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")

        handle = JobHandle(name, interval)
        handle.task = asyncio.create_task(self._loop(handle, callback), name=f"job:{name}")
        logger.info(f"Scheduled job '{name}' every {interval:.0f}s")
        return handle

    async def _loop(self, handle: JobHandle, callback: JobCallback) -> None:
        while True:
            await self.sleep(handle.interval)
            try:
                await callback()
            except Exception as e:
                logger.error(f"Job '{handle.name}' failed: {e}", exc_info=True)
            handle.runs += 1
