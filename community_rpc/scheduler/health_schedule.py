"""Health check scheduler: APScheduler job that runs the monitor's probe cycle.

Schedule:
- Every 15 min (configurable): probe all backends, refresh snapshot

Overlapping runs are skipped (max_instances=1); a crashed cycle is logged and
the next one runs on schedule.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from community_rpc.config import PROBE_INTERVAL_MINUTES
from community_rpc.monitor.checker import HealthMonitor

logger = logging.getLogger(__name__)

JOB_ID = "health_check"


class HealthCheckScheduler:
    """Runs ``HealthMonitor.run_probe_cycle`` on an interval."""

    def __init__(self, monitor: HealthMonitor, interval_minutes: int = PROBE_INTERVAL_MINUTES):
        self._monitor = monitor
        self.interval_minutes = interval_minutes
        self._scheduler = AsyncIOScheduler()

    async def run_once(self) -> None:
        logger.info("Running scheduled health check")
        try:
            await self._monitor.run_probe_cycle()
        except Exception:
            logger.exception("Scheduled health check failed")

    def start(self, run_immediately: bool = True) -> None:
        """Register the job and start the scheduler on the running loop."""
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="Probe all backends",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if run_immediately:
            self._scheduler.add_job(self.run_once, id=f"{JOB_ID}_startup", name="Startup probe")
        self._scheduler.start()
        logger.info("Health check scheduler started (every %d min)", self.interval_minutes)

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Health check scheduler stopped")

    @property
    def jobs(self):
        return self._scheduler.get_jobs()
