"""
Service layer for the job queue feature.
"""

from .feed_client import FeedApiError, JobFeedClient, job_feed_client
from .sync_service import JobFeedSyncError, JobFeedSyncService, job_feed_sync_service

__all__ = [
    "FeedApiError",
    "JobFeedClient",
    "job_feed_client",
    "JobFeedSyncError",
    "JobFeedSyncService",
    "job_feed_sync_service",
]
