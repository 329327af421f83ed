"""
Named periodic jobs driven by asyncio tasks.
"""

from typing import Dict, List, Optional, Callable, Awaitable, Union
from datetime import timedelta
from dataclasses import dataclass
import asyncio
import inspect

from utils.logging import get_logger

logger = get_logger(__name__)

JobCallback = Callable[[], Union[None, Awaitable[None]]]


@dataclass
class ScheduledJob:
    """A callback run every ``interval``."""
    name: str
    interval: timedelta
    callback: JobCallback
    runs: int = 0
    failures: int = 0


class PeriodicScheduler:
    """
    Owns one asyncio task per job.

    start() is idempotent while running; stop() cancels every task it
    created. A job that raises is logged and runs again on its next tick.
    """

    def __init__(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self.jobs: Dict[str, ScheduledJob] = {}
        self.sleep = sleep or asyncio.sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def add_job(self, name: str, interval: timedelta, callback: JobCallback) -> ScheduledJob:
        """Register a job; takes effect on the next start()."""
        if name in self.jobs:
            raise ValueError(f"Job already registered: {name}")
        job = ScheduledJob(name=name, interval=interval, callback=callback)
        self.jobs[name] = job
        return job

    def start(self) -> Dict[str, asyncio.Task]:
        """
        Start one task per job on the running event loop.

        Returns:
            Task handles keyed by job name
        """
        if self._running:
            logger.warning("Scheduler already running, not starting duplicate timers")
            return dict(self._tasks)

        loop = asyncio.get_running_loop()
        for name, job in self.jobs.items():
            self._tasks[name] = loop.create_task(self._run_loop(job), name=f"scheduler:{name}")

        self._running = True
        logger.info(f"Scheduler started with jobs: {', '.join(self.jobs)}")
        return dict(self._tasks)

    def stop(self) -> List[asyncio.Task]:
        """Cancel every task. Returns the cancelled handles."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()

        self._tasks.clear()
        if self._running:
            logger.info("Scheduler stopped")
        self._running = False
        return tasks

    async def shutdown(self) -> None:
        """Cancel every task and wait until they have finished."""
        tasks = self.stop()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run_job(self, name: str) -> bool:
        """Run one job immediately. Returns False if it raised."""
        return await self._run_once(self.jobs[name])

    # Private methods

    async def _run_loop(self, job: ScheduledJob) -> None:
        interval = job.interval.total_seconds()
        while True:
            await self.sleep(interval)
            await self._run_once(job)

    async def _run_once(self, job: ScheduledJob) -> bool:
        job.runs += 1
        try:
            result = job.callback()
            if inspect.isawaitable(result):
                await result
            return True
        except Exception as e:
            job.failures += 1
            logger.error(f"Scheduled job {job.name} failed: {e}")
            return False
