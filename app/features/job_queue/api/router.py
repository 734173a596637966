"""
Job queue routes.

Manual triggers for the feed sync and the feed consumption callback.
"""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from app.features.job_queue.domain import SyncSummary
from app.features.job_queue.services.feed_client import FeedApiError
from app.features.job_queue.services.sync_service import JobFeedSyncError, job_feed_sync_service
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["job-queue"])


class FeedApplicationRequest(BaseModel):
    feed_job_id: int


@router.post("/sync/{client_id}")
async def sync_client_jobs(client_id: str) -> dict:
    """Top up a single client's queue from the feed."""
    logger.info("Starting job sync via API", client_id=client_id)
    try:
        result = await job_feed_sync_service.sync_jobs_for_client(client_id)
    except FeedApiError as e:
        logger.error("Job sync feed failure", client_id=client_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to sync jobs: {e}",
        ) from e
    except Exception as e:
        logger.error("Job sync failed", client_id=client_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to sync jobs: {e}",
        ) from e

    return {
        "success": True,
        "message": f"Sync complete. Added: {result.added}, Skipped: {result.skipped}",
        **result.to_dict(),
    }


@router.post("/sync-all")
async def sync_all_client_jobs() -> dict:
    """Top up every active or placed client's queue."""
    logger.info("Starting job sync for all clients via API")
    try:
        results = await job_feed_sync_service.sync_jobs_for_all_clients()
    except JobFeedSyncError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    summary = SyncSummary.from_results(results)
    return {
        "success": True,
        "message": f"Synced {summary.clients} clients. Added: {summary.added}, Skipped: {summary.skipped}",
        "totals": summary.to_dict(),
        "results": {client_id: result.to_dict() for client_id, result in results.items()},
    }


@router.post("/{client_id}/feed-applications", status_code=status.HTTP_202_ACCEPTED)
async def register_feed_application(client_id: str, payload: FeedApplicationRequest) -> dict:
    """Tell the feed a client's job has been applied to."""
    try:
        await job_feed_sync_service.mark_job_applied_in_feed(client_id, payload.feed_job_id)
    except FeedApiError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to mark job as applied in feed: {e}",
        ) from e

    return {"success": True, "client_id": client_id, "feed_job_id": payload.feed_job_id}
