"""
Persistence layer for admin inbox items.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import fetch_all, fetch_one
from app.features.automation.domain import AdminInboxItem


class AdminInboxRepository:
    """CRUD for admin_inbox_items. dedupe_key is unique."""

    SELECT_COLUMNS = """
        id, type, severity, title, body, link_ref, status, assigned_to,
        dedupe_key, created_at, updated_at
    """

    @staticmethod
    def _row_to_item(row: dict | None) -> AdminInboxItem | None:
        if not row:
            return None

        return AdminInboxItem(
            id=str(row["id"]),
            type=row["type"],
            severity=row["severity"],
            title=row["title"],
            status=row["status"],
            dedupe_key=row["dedupe_key"],
            body=row.get("body"),
            link_ref=row.get("link_ref"),
            assigned_to=row.get("assigned_to"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @classmethod
    async def insert_item(
        cls,
        *,
        type: str,
        severity: str,
        title: str,
        body: str,
        link_ref: dict[str, Any] | None,
        dedupe_key: str,
        now: datetime,
    ) -> AdminInboxItem:
        """Insert an open item. Raises DuplicateError on a repeated dedupe_key."""

        query = f"""
            INSERT INTO admin_inbox_items (
                type, severity, title, body, link_ref, status, dedupe_key,
                created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, 'open', %s, %s, %s)
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (type, severity, title, body, Jsonb(link_ref) if link_ref else None, dedupe_key, now, now),
        )
        return cls._row_to_item(row)

    @classmethod
    async def list_items(
        cls,
        status: str | None = None,
        severity: str | None = None,
        type: str | None = None,
        limit: int = 50,
    ) -> list[AdminInboxItem]:
        clauses = []
        params: list[Any] = []
        for column, value in (("status", status), ("severity", severity), ("type", type)):
            if value:
                clauses.append(f"{column} = %s")
                params.append(value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM admin_inbox_items
            {where}
            ORDER BY created_at DESC
            LIMIT %s
        """
        params.append(limit)
        rows = await fetch_all(query, tuple(params))
        return [cls._row_to_item(row) for row in rows]

    @classmethod
    async def get_item(cls, item_id: str) -> AdminInboxItem | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM admin_inbox_items WHERE id = %s"
        return cls._row_to_item(await fetch_one(query, (item_id,)))

    @classmethod
    async def update_status(
        cls, item_id: str, status: str, expected_statuses: tuple[str, ...], now: datetime
    ) -> AdminInboxItem | None:
        """Move the item only while it is in one of expected_statuses. None otherwise."""
        query = f"""
            UPDATE admin_inbox_items
            SET status = %s, updated_at = %s
            WHERE id = %s
              AND status = ANY(%s)
            RETURNING {cls.SELECT_COLUMNS}
        """
        return cls._row_to_item(await fetch_one(query, (status, now, item_id, list(expected_statuses))))

