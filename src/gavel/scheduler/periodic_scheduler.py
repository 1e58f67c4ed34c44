"""Generic scheduler for periodic background jobs.

Runs a user-supplied coroutine on a fixed interval until shut down. A failing
run is logged and the loop carries on with the next interval.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from gavel.util.logger import get_logger

logger = get_logger("periodic_scheduler")


class PeriodicJobScheduler:
    """
    Reusable runner for one periodic job.

    Args:
        name: Human-readable name for logging (e.g., "signal rebuild").
        job: Async callable taking no arguments.
        get_interval: Callable returning the interval in seconds (called at start).
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        get_interval: Callable[[], float],
    ) -> None:
        self._name = name
        self._job = job
        self._get_interval = get_interval
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """Run the job a single time, logging instead of raising on failure."""
        try:
            await self._job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[%s] Unexpected error during run: %s", self._name, exc)

    async def _run_loop(self, interval: float) -> None:
        """Infinite loop: run the job, sleep, repeat."""
        logger.info("[%s] Starting periodic job (interval=%.1fs)", self._name, interval)
        try:
            while True:
                await self.run_once()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("[%s] Periodic job cancelled", self._name)
            raise

    def start(self) -> None:
        """Start the background task if not already running."""
        if self.is_running:
            logger.warning("[%s] Job already running", self._name)
            return
        interval = self._get_interval()
        self._task = asyncio.create_task(self._run_loop(interval), name=f"gavel-{self._name}")

    async def shutdown(self) -> None:
        """Cancel the task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[%s] Scheduler shutdown complete", self._name)
