"""
Maintenance Scheduler - runs consolidation and monthly snapshots on a cron.

Uses APScheduler's in-memory AsyncIOScheduler; the jobs are fixed and are
re-registered on every start, so nothing needs persisting.
"""

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .engine import LivingMemory

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Schedules the consolidation ("sleep") pass and the monthly snapshot."""

    def __init__(self, memory: LivingMemory):
        self.memory = memory
        self.settings = memory.settings
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register jobs and start the scheduler (needs a running event loop)."""
        self.scheduler.add_job(
            self._run_consolidation,
            trigger=CronTrigger(**self.settings.consolidation_cron),
            id="consolidation",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._run_monthly_snapshot,
            trigger=CronTrigger(**self.settings.snapshot_cron),
            id="monthly_snapshot",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Consolidation scheduled: {self.settings.consolidation_cron}")
        logger.info(f"Monthly snapshot scheduled: {self.settings.snapshot_cron}")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Maintenance scheduler stopped")

    def next_run_times(self) -> dict[str, datetime | None]:
        return {job.id: job.next_run_time for job in self.scheduler.get_jobs()}

    async def _run_consolidation(self):
        try:
            run = await self.memory.run_consolidation()
            logger.info(
                f"Scheduled consolidation #{run.id}: {run.patterns_detected} patterns, "
                f"{run.strengthened_items} strengthened, {run.stale_items_faded} faded"
            )
        except Exception as e:
            logger.error(f"Scheduled consolidation failed: {e}")
            self.memory.audit_log.log(
                "reject", "scheduler", "Scheduled consolidation failed",
                details=str(e), success=False,
            )

    async def _run_monthly_snapshot(self):
        try:
            period = await self.memory.consolidator.snapshot_closed_month(self.memory.clock())
            if period:
                logger.info(f"Scheduled snapshot stored for {period}")
            else:
                logger.info("Closed month already snapshotted, nothing to do")
        except Exception as e:
            logger.error(f"Scheduled snapshot failed: {e}")
            self.memory.audit_log.log(
                "reject", "scheduler", "Scheduled snapshot failed",
                details=str(e), success=False,
            )
