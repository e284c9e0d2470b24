"""Periodic eager expiration of durable cache entries."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import SchedulerAlreadyRunningError

from kvcache.core.metrics import record_sweep, record_sweep_failure
from kvcache.core.result import DurableStoreError
from kvcache.core.settings import DEFAULT_SWEEP_INTERVAL_SECONDS
from kvcache.domain.cache_service import CacheService

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """
    Runs ``CacheService.sweep_expired`` on a fixed interval.

    The job coalesces missed runs and never overlaps itself. A failed run is
    logged and the schedule keeps going. The fast store is left alone: shadow
    entries expire by their own TTL.
    """

    job_id = "cache:expiration_sweep"

    def __init__(
        self,
        service: CacheService,
        *,
        scheduler: Optional[AsyncIOScheduler] = None,
        interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._service = service
        self._scheduler = scheduler or create_scheduler()
        self._owns_scheduler = scheduler is None
        self._interval = max(1, int(interval_seconds))
        self.last_run_at: Optional[datetime] = None
        self.last_removed: int = 0

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    def start(self) -> None:
        """Register the job and start the scheduler; must run inside the event loop."""
        misfire = max(self._interval // 2, 1)
        job = self._scheduler.get_job(self.job_id)
        if job is None:
            self._scheduler.add_job(
                self.run_once,
                "interval",
                seconds=self._interval,
                id=self.job_id,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=misfire,
            )
        else:
            job.modify(max_instances=1, coalesce=True, misfire_grace_time=misfire)
            job.reschedule("interval", seconds=self._interval)

        if not self._scheduler.running:
            try:
                self._scheduler.start()
            except SchedulerAlreadyRunningError:
                pass
        logger.info("Expiration sweep scheduled every %s seconds", self._interval)

    async def shutdown(self) -> None:
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            pass
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    async def run_once(self) -> int:
        """Sweep now; returns the number of removed entries, 0 when the run failed."""
        logger.debug("Starting cleanup of expired cache entries")
        try:
            removed = await self._service.sweep_expired()
        except DurableStoreError:
            record_sweep_failure()
            logger.exception("Expiration sweep failed")
            return 0

        record_sweep(removed)
        self.last_run_at = datetime.now(timezone.utc)
        self.last_removed = removed
        if removed:
            logger.info("Expiration sweep removed %s entries", removed, extra={"removed": removed})
        else:
            logger.debug("Completed cleanup of expired cache entries")
        return removed


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(jobstores={"default": MemoryJobStore()}, timezone="UTC")


__all__ = ["ExpirationSweeper", "create_scheduler"]
