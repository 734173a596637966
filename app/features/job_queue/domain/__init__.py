"""
Domain exports for the job queue feature.
"""

from .models import (
    BOARD_SOURCE,
    FEED_SOURCE,
    REQUIRED_FEED_FIELDS,
    SYNCABLE_CLIENT_STATUSES,
    Application,
    Client,
    FeedJob,
    Job,
    NewJob,
    SyncResult,
    SyncSummary,
)

__all__ = [
    "BOARD_SOURCE",
    "FEED_SOURCE",
    "REQUIRED_FEED_FIELDS",
    "SYNCABLE_CLIENT_STATUSES",
    "Application",
    "Client",
    "FeedJob",
    "Job",
    "NewJob",
    "SyncResult",
    "SyncSummary",
]
