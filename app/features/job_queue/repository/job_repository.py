"""
Repository helpers for the job queue.

Reads client queues and inserts jobs accepted from the feed. Dedup is an
explicit existence check on (client_id, feed_job_id) before insert.
"""

from typing import Any

from app.db.helpers import DatabaseError, fetch_all, fetch_one, with_db_retry
from app.features.job_queue.domain import Application, Client, Job, NewJob
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JOB_COLUMNS = """
    id, client_id, feed_job_id, job_title, company_name, job_url,
    job_location, company_logo, feed_source, board_source, scraped_at
"""


def _row_to_job(row: dict[str, Any]) -> Job:
    return Job(
        id=str(row["id"]),
        client_id=str(row["client_id"]),
        feed_job_id=row.get("feed_job_id"),
        job_title=row.get("job_title") or "",
        company_name=row.get("company_name") or "",
        job_url=row.get("job_url") or "",
        job_location=row.get("job_location"),
        company_logo=row.get("company_logo"),
        feed_source=row.get("feed_source"),
        board_source=row.get("board_source"),
        scraped_at=row.get("scraped_at"),
    )


class JobRepository:
    """Persistence helpers for jobs, applications, sessions and clients."""

    @classmethod
    @with_db_retry()
    async def get_jobs_by_client(cls, client_id: str) -> list[Job]:
        query = f"""
            SELECT {JOB_COLUMNS}
            FROM jobs
            WHERE client_id = %s
            ORDER BY scraped_at DESC NULLS LAST
        """
        rows = await fetch_all(query, (client_id,))
        return [_row_to_job(row) for row in rows]

    @classmethod
    @with_db_retry()
    async def get_applications_by_client(cls, client_id: str) -> list[Application]:
        query = """
            SELECT id, job_id, client_id, applier_id
            FROM applications
            WHERE client_id = %s
        """
        rows = await fetch_all(query, (client_id,))
        return [
            Application(
                id=str(row["id"]),
                job_id=str(row["job_id"]),
                client_id=str(row["client_id"]),
                applier_id=str(row["applier_id"]) if row.get("applier_id") else None,
            )
            for row in rows
        ]

    @classmethod
    @with_db_retry()
    async def get_flagged_job_ids(cls, job_ids: list[str]) -> set[str]:
        """Jobs with a flagged session by any applier."""
        if not job_ids:
            return set()

        query = """
            SELECT DISTINCT job_id
            FROM applier_job_sessions
            WHERE status = 'flagged'
              AND job_id = ANY(%s)
        """
        rows = await fetch_all(query, (job_ids,))
        return {str(row["job_id"]) for row in rows}

    @classmethod
    async def get_job_by_feed_id(cls, client_id: str, feed_job_id: int) -> Job | None:
        query = f"""
            SELECT {JOB_COLUMNS}
            FROM jobs
            WHERE client_id = %s
              AND feed_job_id = %s
            LIMIT 1
        """
        row = await fetch_one(query, (client_id, feed_job_id))
        return _row_to_job(row) if row else None

    @classmethod
    async def create_job(cls, new_job: NewJob) -> Job:
        query = f"""
            INSERT INTO jobs (
                client_id, feed_job_id, feed_source, board_source, job_title,
                company_name, job_url, job_location, company_logo, scraped_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {JOB_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                new_job.client_id,
                new_job.feed_job_id,
                new_job.feed_source,
                new_job.board_source,
                new_job.job_title,
                new_job.company_name,
                new_job.job_url,
                new_job.job_location,
                new_job.company_logo,
                new_job.scraped_at,
            ),
        )
        if not row:
            raise DatabaseError("Job insert returned no row", operation="create_job")

        logger.debug(
            "Job created from feed",
            client_id=new_job.client_id,
            feed_job_id=new_job.feed_job_id,
        )
        return _row_to_job(row)

    @classmethod
    @with_db_retry()
    async def get_clients(cls) -> list[Client]:
        query = """
            SELECT id, status, full_name
            FROM clients
            ORDER BY created_at
        """
        rows = await fetch_all(query)
        return [
            Client(id=str(row["id"]), status=row.get("status") or "", name=row.get("full_name"))
            for row in rows
        ]
