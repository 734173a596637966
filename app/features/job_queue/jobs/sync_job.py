"""
Job feed sync background job.

Runs the sync-all pass on a fixed interval inside the worker process.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.features.job_queue.domain import SyncSummary
from app.features.job_queue.services.sync_service import (
    JobFeedSyncError,
    JobFeedSyncService,
    job_feed_sync_service,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class JobFeedSyncJob:
    """Periodic wrapper around JobFeedSyncService.sync_jobs_for_all_clients."""

    def __init__(self, service: JobFeedSyncService | None = None):
        self.service = service or job_feed_sync_service
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.last_summary: SyncSummary | None = None

    async def run_once(self) -> dict:
        """
        Run a single sync-all pass.

        Returns:
            Dict: run totals, or a skip marker when a pass is already running
        """
        if self.is_running:
            logger.warning("Job feed sync already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        started = datetime.now(UTC)
        try:
            self.is_running = True
            results = await self.service.sync_jobs_for_all_clients()

            summary = SyncSummary.from_results(results)
            self.last_summary = summary
            self.last_run_time = datetime.now(UTC)

            metrics = {
                "job_run": "job_feed_sync",
                "start_time": started.isoformat(),
                "duration_seconds": round((self.last_run_time - started).total_seconds(), 2),
                **summary.to_dict(),
            }
            logger.info("Job feed sync completed", **metrics)
            return metrics

        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {
            "job_name": "job_feed_sync",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": settings.JOB_SYNC_INTERVAL_MINUTES,
            "last_run_totals": self.last_summary.to_dict() if self.last_summary else None,
        }


# Singleton instance for application use
job_feed_sync_job = JobFeedSyncJob()


async def run_job_feed_sync() -> dict:
    """Run a single iteration of the job feed sync."""
    return await job_feed_sync_job.run_once()


async def start_job_feed_sync_scheduler() -> None:
    """
    Run the job feed sync forever on JOB_SYNC_INTERVAL_MINUTES.

    Opens the database pool for the worker process and closes it on exit.
    """
    from app.db.pool import db_pool
    from app.features.job_queue.services.feed_client import job_feed_client

    interval_minutes = settings.JOB_SYNC_INTERVAL_MINUTES
    logger.info("Starting job feed sync scheduler", interval_minutes=interval_minutes)

    await db_pool.initialize()
    try:
        while True:
            try:
                await run_job_feed_sync()
            except JobFeedSyncError as e:
                logger.error("Job feed sync run failed", error=str(e), operation=e.operation)
            except Exception as e:
                logger.error(
                    "Error in job feed sync scheduler", error=str(e), error_type=type(e).__name__
                )

            await asyncio.sleep(interval_minutes * 60)
    finally:
        await job_feed_client.close()
        await db_pool.close()


if __name__ == "__main__":
    asyncio.run(start_job_feed_sync_scheduler())
