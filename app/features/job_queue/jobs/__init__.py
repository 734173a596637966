"""
Background jobs for the job queue feature.
"""

from .sync_job import JobFeedSyncJob, job_feed_sync_job, start_job_feed_sync_scheduler

__all__ = ["JobFeedSyncJob", "job_feed_sync_job", "start_job_feed_sync_scheduler"]
