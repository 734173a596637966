"""
Job feed API client.

Wraps the external PostgREST feed that supplies reviewable jobs per client
and records which feed jobs have been consumed. Non-2xx responses are hard
errors; callers decide how to isolate them.
"""

from typing import Any

import httpx
from pydantic import ValidationError

from app.config import settings
from app.features.job_queue.domain import REQUIRED_FEED_FIELDS, FeedJob
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

USER_JOB_FEED_PATH = "/jumpseat_user_job_feed"
REGISTER_APPLICATION_PATH = "/register_jumpseat_user_job_application"


class FeedApiError(Exception):
    """Raised when the feed API is unreachable or answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class JobFeedClient:
    """Async client for the job feed RPC endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        auth_token: str | None = None,
        exclude_apply_domains: list[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.feed_api_base()).rstrip("/")
        self.auth_token = auth_token if auth_token is not None else settings.FEED_AUTH_TOKEN
        self.exclude_apply_domains = (
            exclude_apply_domains
            if exclude_apply_domains is not None
            else list(settings.FEED_EXCLUDE_APPLY_DOMAINS)
        )
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.FEED_REQUEST_TIMEOUT),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any], operation: str) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.post(url, json=payload, headers=self._get_headers())
        except httpx.HTTPError as e:
            logger.error("Feed API request failed", operation=operation, error=str(e))
            raise FeedApiError(f"Feed API request failed: {e}", operation=operation) from e

        if not response.is_success:
            logger.error(
                "Feed API returned error status",
                operation=operation,
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise FeedApiError(
                f"Feed API error: {response.status_code} {response.reason_phrase}",
                operation=operation,
                status_code=response.status_code,
            )

        return response

    async def fetch_user_job_feed(self, client_id: str, page_size: int) -> list[FeedJob]:
        """
        Fetch up to ``page_size`` jobs for a client.

        Items that cannot be parsed are returned as empty FeedJob objects so
        the caller counts them as skipped without losing response order.
        """
        payload = {
            "user": client_id,
            "exclude_apply_domains": self.exclude_apply_domains,
            "page_size": page_size,
        }
        response = await self._post(USER_JOB_FEED_PATH, payload, operation="fetch_user_job_feed")

        try:
            data = response.json()
        except ValueError as e:
            raise FeedApiError(
                f"Invalid feed response format: {e}",
                operation="fetch_user_job_feed",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, list):
            raise FeedApiError(
                "Feed response is not a list",
                operation="fetch_user_job_feed",
                status_code=response.status_code,
            )

        jobs = [self._parse_item(item) for item in data]

        logger.info(
            "Fetched jobs from feed",
            client_id=client_id,
            requested=page_size,
            received=len(jobs),
        )
        return jobs

    @staticmethod
    def _parse_item(item: Any) -> FeedJob:
        """
        Parse one feed item.

        Invalid optional fields are dropped and the job kept; an invalid
        required field makes the whole item unusable.
        """
        if not isinstance(item, dict):
            logger.warning("Feed item is not an object", item_type=type(item).__name__)
            return FeedJob()
        try:
            return FeedJob.model_validate(item)
        except ValidationError as e:
            invalid = {str(error["loc"][0]) for error in e.errors() if error["loc"]}
            invalid_required = sorted(invalid.intersection(REQUIRED_FEED_FIELDS))
            if invalid_required:
                logger.warning(
                    "Feed item failed validation",
                    canonical_job_id=item.get("canonical_job_id"),
                    invalid_fields=invalid_required,
                )
                return FeedJob()

        logger.warning(
            "Dropping invalid optional feed fields",
            canonical_job_id=item.get("canonical_job_id"),
            invalid_fields=sorted(invalid),
        )
        cleaned = {key: value for key, value in item.items() if key not in invalid}
        try:
            return FeedJob.model_validate(cleaned)
        except ValidationError as e:
            logger.warning(
                "Feed item failed validation",
                canonical_job_id=item.get("canonical_job_id"),
                error_count=e.error_count(),
            )
            return FeedJob()

    async def register_job_application(self, client_id: str, feed_job_id: int) -> None:
        """Tell the feed that a client's job has been applied to."""
        await self._post(
            REGISTER_APPLICATION_PATH,
            {"user": client_id, "job": feed_job_id},
            operation="register_job_application",
        )
        logger.info("Registered job application in feed", client_id=client_id, feed_job_id=feed_job_id)


# Singleton instance for application use
job_feed_client = JobFeedClient()
