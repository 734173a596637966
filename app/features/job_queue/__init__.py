"""
Job queue feature package.

Keeps every layer of the queue replenishment flow together: feed payload
models, the jobs repository, the feed client and sync service, the
background sync job and the HTTP triggers.
"""

from .api.router import router as job_queue_router  # noqa: F401
from .services.sync_service import JobFeedSyncService, job_feed_sync_service  # noqa: F401
from .domain.models import FeedJob, Job, SyncResult  # noqa: F401
