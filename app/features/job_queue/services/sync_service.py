"""
Job feed sync service.

Keeps each client's reviewable queue (jobs not yet applied to and not
flagged) at a target size by pulling just enough new jobs from the feed.
Clients are processed one at a time and jobs are inserted in feed order.
"""

from datetime import UTC, datetime

from app.config import settings
from app.features.job_queue.domain import FeedJob, NewJob, SyncResult
from app.features.job_queue.repository import JobRepository
from app.features.job_queue.services.feed_client import JobFeedClient, job_feed_client
from app.infrastructure.observability.logging import get_logger, log_job_sync

logger = get_logger(__name__)


class JobFeedSyncError(Exception):
    """Raised when a client's sync cannot run at all."""

    def __init__(self, message: str, client_id: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.client_id = client_id
        self.operation = operation


class JobFeedSyncService:
    """
    Tops up client job queues from the feed API.

    The queue size counts a client's jobs minus those with an application
    for that client and minus those flagged by any applier.
    """

    def __init__(
        self,
        repository=JobRepository,
        feed_client: JobFeedClient | None = None,
        target_size: int | None = None,
        fetch_padding: int | None = None,
        max_page_size: int | None = None,
    ):
        self.repository = repository
        self._feed_client = feed_client
        self.target_size = target_size if target_size is not None else settings.QUEUE_TARGET_SIZE
        self.fetch_padding = (
            fetch_padding if fetch_padding is not None else settings.QUEUE_FETCH_PADDING
        )
        self.max_page_size = (
            max_page_size if max_page_size is not None else settings.QUEUE_MAX_PAGE_SIZE
        )

    @property
    def feed_client(self) -> JobFeedClient:
        return self._feed_client or job_feed_client

    async def compute_queue_size(self, client_id: str) -> int:
        """Count the client's jobs that are neither applied to nor flagged."""
        jobs = await self.repository.get_jobs_by_client(client_id)
        if not jobs:
            return 0

        applications = await self.repository.get_applications_by_client(client_id)
        applied_job_ids = {application.job_id for application in applications}

        flagged_job_ids = await self.repository.get_flagged_job_ids([job.id for job in jobs])

        return sum(
            1 for job in jobs if job.id not in applied_job_ids and job.id not in flagged_job_ids
        )

    def page_size_for(self, deficit: int) -> int:
        return min(deficit + self.fetch_padding, self.max_page_size)

    async def sync_jobs_for_client(self, client_id: str) -> SyncResult:
        """
        Top up one client's queue.

        Raises:
            FeedApiError: the feed call failed; nothing was inserted
        """
        current = await self.compute_queue_size(client_id)

        if current >= self.target_size:
            logger.debug(
                "Queue already full, skipping feed call",
                client_id=client_id,
                queue_size=current,
                target_size=self.target_size,
            )
            return SyncResult(queue_size=current)

        deficit = self.target_size - current
        page_size = self.page_size_for(deficit)

        logger.info(
            "Syncing jobs for client",
            client_id=client_id,
            queue_size=current,
            deficit=deficit,
            page_size=page_size,
        )

        feed_jobs = await self.feed_client.fetch_user_job_feed(client_id, page_size)

        result = SyncResult()
        added_feed_ids: set[int] = set()

        for feed_job in feed_jobs:
            if result.added >= deficit:
                break

            missing = feed_job.missing_fields()
            if missing:
                result.skipped += 1
                logger.debug(
                    "Skipping malformed feed job",
                    client_id=client_id,
                    canonical_job_id=feed_job.canonical_job_id,
                    missing_fields=missing,
                )
                continue

            if feed_job.canonical_job_id in added_feed_ids:
                result.skipped += 1
                continue

            try:
                if await self._already_queued(client_id, feed_job):
                    result.skipped += 1
                    continue

                await self.repository.create_job(
                    NewJob.from_feed(client_id, feed_job, scraped_at=datetime.now(UTC))
                )
                added_feed_ids.add(feed_job.canonical_job_id)
                result.added += 1

            except Exception as e:
                message = f"Failed to process job {feed_job.canonical_job_id}: {e}"
                result.errors.append(message)
                logger.error(
                    "Error processing feed job",
                    client_id=client_id,
                    canonical_job_id=feed_job.canonical_job_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        result.queue_size = current + result.added
        log_job_sync(client_id, result.added, result.skipped, len(result.errors), result.queue_size)
        return result

    async def _already_queued(self, client_id: str, feed_job: FeedJob) -> bool:
        existing = await self.repository.get_job_by_feed_id(client_id, feed_job.canonical_job_id)
        return existing is not None

    async def sync_jobs_for_all_clients(self) -> dict[str, SyncResult]:
        """
        Sync every active or placed client, one after another.

        A client whose sync fails gets an error-flagged result; the rest
        still run.

        Raises:
            JobFeedSyncError: the client list itself could not be loaded
        """
        try:
            clients = await self.repository.get_clients()
        except Exception as e:
            logger.error("Failed to load clients for job sync", error=str(e))
            raise JobFeedSyncError(f"Failed to load clients: {e}", operation="get_clients") from e

        syncable = [client for client in clients if client.is_syncable]

        logger.info(
            "Starting job sync for clients",
            total_clients=len(clients),
            syncable_clients=len(syncable),
        )

        results: dict[str, SyncResult] = {}
        for client in syncable:
            try:
                results[client.id] = await self.sync_jobs_for_client(client.id)
            except Exception as e:
                logger.error(
                    "Fatal error syncing client",
                    client_id=client.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                results[client.id] = SyncResult(errors=[f"Fatal error: {e}"], failed=True)

        return results

    async def mark_job_applied_in_feed(self, client_id: str, feed_job_id: int) -> None:
        """
        Record in the feed that a client's job was consumed.

        Raises:
            FeedApiError: on any feed failure; no local retry
        """
        await self.feed_client.register_job_application(client_id, feed_job_id)


# Singleton instance for application use
job_feed_sync_service = JobFeedSyncService()
