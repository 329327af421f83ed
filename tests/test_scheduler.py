"""
Tests for the periodic job scheduler.
"""

import asyncio
import pytest
from datetime import timedelta

from resilience.scheduler import PeriodicScheduler


async def spin(iterations=10):
    for _ in range(iterations):
        await asyncio.sleep(0)


class TestJobs:
    """Test job registration and direct runs."""

    def test_duplicate_job_rejected(self):
        scheduler = PeriodicScheduler()
        scheduler.add_job("health_check", timedelta(minutes=5), lambda: None)

        with pytest.raises(ValueError, match="already registered"):
            scheduler.add_job("health_check", timedelta(minutes=1), lambda: None)

    @pytest.mark.asyncio
    async def test_run_job(self):
        calls = []
        scheduler = PeriodicScheduler()
        scheduler.add_job("sweep", timedelta(minutes=1), lambda: calls.append(1))

        assert await scheduler.run_job("sweep")
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_run_async_job(self):
        calls = []

        async def job():
            calls.append(1)

        scheduler = PeriodicScheduler()
        scheduler.add_job("sweep", timedelta(minutes=1), job)

        assert await scheduler.run_job("sweep")
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_failing_job_reported(self):
        def job():
            raise RuntimeError("sweep failed")

        scheduler = PeriodicScheduler()
        scheduler.add_job("sweep", timedelta(minutes=1), job)

        assert not await scheduler.run_job("sweep")
        assert scheduler.jobs["sweep"].failures == 1


class TestLifecycle:
    """Test start, stop and shutdown."""

    def test_start_requires_running_loop(self):
        scheduler = PeriodicScheduler()
        scheduler.add_job("sweep", timedelta(minutes=1), lambda: None)

        with pytest.raises(RuntimeError):
            scheduler.start()

    @pytest.mark.asyncio
    async def test_jobs_run_on_interval(self, recording_sleep):
        calls = []
        scheduler = PeriodicScheduler(sleep=recording_sleep)
        scheduler.add_job("sweep", timedelta(minutes=2), lambda: calls.append(1))

        scheduler.start()
        await spin()
        await scheduler.shutdown()

        assert calls
        assert set(recording_sleep.delays) == {120.0}

    @pytest.mark.asyncio
    async def test_failing_job_keeps_running(self, recording_sleep):
        def job():
            raise RuntimeError("sweep failed")

        scheduler = PeriodicScheduler(sleep=recording_sleep)
        scheduler.add_job("sweep", timedelta(minutes=1), job)

        scheduler.start()
        await spin()
        await scheduler.shutdown()

        assert scheduler.jobs["sweep"].failures >= 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        scheduler = PeriodicScheduler()
        scheduler.add_job("a", timedelta(minutes=1), lambda: None)
        scheduler.add_job("b", timedelta(minutes=5), lambda: None)

        first = scheduler.start()
        second = scheduler.start()

        assert set(first) == {"a", "b"}
        assert first == second
        assert scheduler.is_running

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_tasks(self):
        scheduler = PeriodicScheduler()
        scheduler.add_job("a", timedelta(minutes=1), lambda: None)

        tasks = scheduler.start()
        await scheduler.shutdown()

        assert all(task.done() for task in tasks.values())
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        scheduler = PeriodicScheduler()
        scheduler.add_job("a", timedelta(minutes=1), lambda: None)

        first = scheduler.start()
        await scheduler.shutdown()
        second = scheduler.start()

        assert first["a"] is not second["a"]
        await scheduler.shutdown()
