"""
Scheduler: runs the AdRoom passes on APScheduler interval triggers.

Default schedule:
    - every 15 min: autonomous worker sweep
    - every 15 min: execution engine (scheduled posts, metrics, guardrail)
    - every 60 min: platform intelligence cycle
    - every 6 h:    optimization loop
    - every 24 h:   learning loop

One AsyncIOScheduler job per pass, with max_instances=1 and coalesce=True.
Jobs also share a lock, so two passes never run at the same time. A job
that raises is logged and counted; its trigger keeps firing.

Usage:
    scheduler = Scheduler()
    scheduler.add_job("worker", worker.run, minutes=15)
    await scheduler.run_forever()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    name: str
    func: Callable[[], Awaitable[Any]]
    interval_seconds: float
    runs: int = 0
    failures: int = 0
    last_error: Optional[str] = None


class Scheduler:
    """Interval scheduler for the async passes."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._jobs: dict[str, ScheduledJob] = {}
        self._lock = asyncio.Lock()
        self._stopped = asyncio.Event()

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def add_job(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        *,
        minutes: float,
        run_immediately: bool = True,
    ) -> ScheduledJob:
        """Register a pass. It first fires at start-up unless delayed."""
        if minutes <= 0:
            raise ValueError("Job interval must be positive")
        if name in self._jobs:
            raise ValueError(f"Job already registered: {name}")

        job = ScheduledJob(name=name, func=func, interval_seconds=minutes * 60)
        options: dict[str, Any] = {}
        if run_immediately:
            options["next_run_time"] = datetime.now(timezone.utc)

        self.scheduler.add_job(
            self.run_job,
            trigger=IntervalTrigger(minutes=minutes),
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            **options,
        )
        self._jobs[name] = job
        logger.info(
            "job_registered",
            extra={"job": name, "interval_minutes": minutes},
        )
        return job

    async def run_job(self, name: str) -> bool:
        """Run one registered pass now. Returns False if it raised."""
        job = self._jobs[name]
        async with self._lock:
            start = time.monotonic()
            try:
                await job.func()
            except Exception as e:
                job.failures += 1
                job.last_error = str(e)
                logger.error(
                    "job_failed",
                    extra={"job": name, "error": str(e)[:200]},
                    exc_info=True,
                )
                return False
            finally:
                job.runs += 1

            job.last_error = None
            logger.info(
                "job_completed",
                extra={
                    "job": name,
                    "duration_ms": round((time.monotonic() - start) * 1000),
                },
            )
            return True

    async def run_forever(self) -> None:
        """Start the triggers and block until stop() is called."""
        self._stopped.clear()
        self.scheduler.start()
        logger.info("scheduler_started", extra={"jobs": list(self._jobs)})
        try:
            await self._stopped.wait()
        finally:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")

    def stop(self) -> None:
        self._stopped.set()
