"""Cron scheduler for the monitoring jobs.

Each job body runs inside an isolation wrapper: an exception is converted to
``SchedulerError``, logged, and handed to a single error callback. It never
reaches APScheduler or the other jobs.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..errors import SchedulerError

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[object]]
ErrorCallback = Callable[[SchedulerError], Awaitable[None]]


@dataclass
class ScheduleJob:
    """Timer bookkeeping for one named job. Owned by the Scheduler."""

    id: str
    cron_expression: str
    last_fired_at: datetime | None = None
    is_cancelled: bool = False


class Scheduler:
    """Runs named async jobs on independent 5-field cron timers."""

    # Full cycles guard their own overlap; APScheduler must not drop firings
    # of a job whose previous run is still going.
    MAX_INSTANCES = 3
    MISFIRE_GRACE_SECONDS = 30

    def __init__(
        self,
        timezone_name: str = "UTC",
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._timezone = timezone_name
        self._on_error = on_error
        self._jobs: dict[str, ScheduleJob] = {}
        self._funcs: dict[str, JobFunc] = {}
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def jobs(self) -> dict[str, ScheduleJob]:
        return dict(self._jobs)

    def add(self, job_id: str, cron_expression: str, func: JobFunc) -> ScheduleJob:
        if job_id in self._jobs:
            raise ValueError(f"Job '{job_id}' is already registered")
        CronTrigger.from_crontab(cron_expression, timezone=self._timezone)
        job = ScheduleJob(id=job_id, cron_expression=cron_expression)
        self._jobs[job_id] = job
        self._funcs[job_id] = func
        return job

    def start(self) -> None:
        """Arm every registered job. A no-op while already running."""
        if self._scheduler is not None:
            logger.debug("Scheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone=self._timezone)
        for job_id, job in self._jobs.items():
            job.is_cancelled = False
            scheduler.add_job(
                self._wrap(job_id),
                CronTrigger.from_crontab(job.cron_expression, timezone=self._timezone),
                id=job_id,
                max_instances=self.MAX_INSTANCES,
                coalesce=True,
                misfire_grace_time=self.MISFIRE_GRACE_SECONDS,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Scheduler started: %s",
            ", ".join(f"{j.id} [{j.cron_expression}]" for j in self._jobs.values()),
        )

    def stop(self) -> None:
        """Cancel all future firings. Job bodies already running are left alone."""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return
        scheduler.remove_all_jobs()
        scheduler.shutdown(wait=False)
        for job in self._jobs.values():
            job.is_cancelled = True
        logger.info("Scheduler stopped")

    def pending_jobs(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    async def fire(self, job_id: str) -> None:
        """Run a job body now, through the same isolation wrapper."""
        if job_id not in self._funcs:
            raise KeyError(job_id)
        await self._wrap(job_id)()

    def _wrap(self, job_id: str) -> Callable[[], Awaitable[None]]:
        func = self._funcs[job_id]
        job = self._jobs[job_id]

        async def run_job() -> None:
            job.last_fired_at = datetime.now(timezone.utc)
            try:
                await func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = SchedulerError(job_id, e)
                logger.exception("Job '%s' raised", job_id)
                await self._report(error)

        return run_job

    async def _report(self, error: SchedulerError) -> None:
        if self._on_error is None:
            return
        try:
            await self._on_error(error)
        except Exception as e:
            logger.error("Scheduler error callback failed: %s", e)
