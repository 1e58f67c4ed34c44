"""Tests for the periodic job scheduler."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from gavel.scheduler.periodic_scheduler import PeriodicJobScheduler


class TestPeriodicJobScheduler:
    """Tests for PeriodicJobScheduler."""

    @pytest.mark.asyncio
    async def test_run_once_runs_job(self):
        job = AsyncMock()
        scheduler = PeriodicJobScheduler("test", job, lambda: 60)

        await scheduler.run_once()

        job.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_once_logs_failures(self):
        job = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = PeriodicJobScheduler("test", job, lambda: 60)

        await scheduler.run_once()

        job.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        ran = asyncio.Event()

        async def job():
            ran.set()

        scheduler = PeriodicJobScheduler("test", job, lambda: 3600)
        assert scheduler.is_running is False

        scheduler.start()
        await asyncio.wait_for(ran.wait(), timeout=1)
        assert scheduler.is_running is True

        await scheduler.shutdown()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_loop_continues_after_failure(self):
        calls = []

        async def job():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("first run fails")

        scheduler = PeriodicJobScheduler("test", job, lambda: 0.01)
        scheduler.start()
        for _ in range(100):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.shutdown()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self):
        scheduler = PeriodicJobScheduler("test", AsyncMock(), lambda: 3600)

        scheduler.start()
        first = scheduler._task
        scheduler.start()

        assert scheduler._task is first
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_without_start(self):
        scheduler = PeriodicJobScheduler("test", AsyncMock(), lambda: 3600)

        await scheduler.shutdown()

        assert scheduler.is_running is False
