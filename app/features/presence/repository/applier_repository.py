"""
Repository helpers for applier presence fields.
"""

from typing import Any

from psycopg import sql

from app.db.helpers import fetch_one
from app.features.presence.domain import Applier
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Columns presence is allowed to write
UPDATABLE_COLUMNS = frozenset({"status", "last_activity_at"})


def _row_to_applier(row: dict[str, Any]) -> Applier:
    return Applier(
        id=str(row["id"]),
        status=row.get("status") or "",
        last_activity_at=row.get("last_activity_at"),
        name=row.get("name"),
    )


class ApplierRepository:
    """Reads and writes presence state on the appliers table."""

    @classmethod
    async def get_applier(cls, applier_id: str) -> Applier | None:
        query = """
            SELECT id, name, status, last_activity_at
            FROM appliers
            WHERE id = %s
        """
        row = await fetch_one(query, (applier_id,))
        return _row_to_applier(row) if row else None

    @classmethod
    async def update_applier(cls, applier_id: str, updates: dict[str, Any]) -> Applier | None:
        unknown = set(updates) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported applier fields: {', '.join(sorted(unknown))}")
        if not updates:
            return await cls.get_applier(applier_id)

        columns = list(updates)
        query = sql.SQL(
            "UPDATE appliers SET {assignments}, updated_at = NOW() "
            "WHERE id = %s RETURNING id, name, status, last_activity_at"
        ).format(
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(column)) for column in columns
            )
        )
        params = tuple(updates[column] for column in columns) + (applier_id,)

        row = await fetch_one(query, params)
        if not row:
            logger.warning("Applier update matched no rows", applier_id=applier_id)
            return None
        return _row_to_applier(row)
