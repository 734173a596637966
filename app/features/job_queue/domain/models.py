"""
Domain models for the job queue feature.

Rows read from Postgres are plain dataclasses; the feed payload is parsed
with pydantic because it comes from an external service and may be
incomplete.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

SessionStatus = Literal["pending", "in_progress", "applied", "flagged"]

# Clients in these states get their queue topped up
SYNCABLE_CLIENT_STATUSES = frozenset({"active", "placed"})

FEED_SOURCE = "feed"
BOARD_SOURCE = "job_feed_api"

# Feed fields a job cannot be queued without
REQUIRED_FEED_FIELDS = ("canonical_job_id", "title", "company", "apply_url")


class FeedJob(BaseModel):
    """One item of the jumpseat_user_job_feed response."""

    model_config = ConfigDict(extra="allow")

    canonical_job_id: int | None = None
    title: str | None = None
    company: str | None = None
    company_logo: str | None = None
    job_location: str | None = None
    apply_url: str | None = None
    cursor_time: str | None = None
    cursor_id: int | None = None

    def missing_fields(self) -> list[str]:
        """Required fields that are absent or blank."""
        missing = []
        for name in REQUIRED_FEED_FIELDS:
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()


@dataclass(slots=True)
class Job:
    """Represents a jobs row owned by one client."""

    id: str
    client_id: str
    feed_job_id: int | None
    job_title: str
    company_name: str
    job_url: str
    job_location: str | None = None
    company_logo: str | None = None
    feed_source: str | None = None
    board_source: str | None = None
    scraped_at: datetime | None = None


@dataclass(slots=True)
class NewJob:
    """Insert payload for a job accepted from the feed."""

    client_id: str
    feed_job_id: int
    job_title: str
    company_name: str
    job_url: str
    job_location: str | None
    company_logo: str | None
    scraped_at: datetime
    feed_source: str = FEED_SOURCE
    board_source: str = BOARD_SOURCE

    @classmethod
    def from_feed(cls, client_id: str, feed_job: FeedJob, scraped_at: datetime) -> "NewJob":
        return cls(
            client_id=client_id,
            feed_job_id=feed_job.canonical_job_id,
            job_title=feed_job.title.strip(),
            company_name=feed_job.company.strip(),
            job_url=feed_job.apply_url.strip(),
            job_location=feed_job.job_location,
            company_logo=feed_job.company_logo,
            scraped_at=scraped_at,
        )


@dataclass(slots=True)
class Application:
    """Represents a submitted application (existence check only)."""

    id: str
    job_id: str
    client_id: str
    applier_id: str | None = None


@dataclass(slots=True)
class Client:
    """Represents a clients row; only the fields the sync needs."""

    id: str
    status: str
    name: str | None = None

    @property
    def is_syncable(self) -> bool:
        return self.status in SYNCABLE_CLIENT_STATUSES


@dataclass(slots=True)
class SyncResult:
    """Outcome of topping up one client's queue."""

    added: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    queue_size: int | None = None
    failed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "queue_size": self.queue_size,
            "failed": self.failed,
        }


@dataclass(slots=True)
class SyncSummary:
    """Totals across a sync-all run."""

    clients: int = 0
    failed_clients: int = 0
    added: int = 0
    skipped: int = 0
    errors: int = 0

    @classmethod
    def from_results(cls, results: dict[str, SyncResult]) -> "SyncSummary":
        summary = cls(clients=len(results))
        for result in results.values():
            summary.added += result.added
            summary.skipped += result.skipped
            summary.errors += len(result.errors)
            if result.failed:
                summary.failed_clients += 1
        return summary

    def to_dict(self) -> dict[str, int]:
        return {
            "clients": self.clients,
            "failed_clients": self.failed_clients,
            "added": self.added,
            "skipped": self.skipped,
            "errors": self.errors,
        }
