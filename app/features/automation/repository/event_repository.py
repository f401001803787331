"""
Persistence layer for automation events (the outbox).

dedupe_key is unique in the table; inserting a duplicate raises
DuplicateError from app.db.helpers and callers decide what that means.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from app.features.automation.domain import EVENT_PENDING, EVENT_SENT, AutomationEvent


class AutomationEventRepository:
    """CRUD for automation_events."""

    SELECT_COLUMNS = """
        id, event_type, payload_json, status, attempts, next_attempt_at,
        last_error, dedupe_key, created_at, updated_at
    """

    @staticmethod
    def _row_to_event(row: dict | None) -> AutomationEvent | None:
        if not row:
            return None

        return AutomationEvent(
            id=str(row["id"]),
            event_type=row["event_type"],
            payload=dict(row.get("payload_json") or {}),
            status=row["status"],
            attempts=row.get("attempts") or 0,
            dedupe_key=row["dedupe_key"],
            next_attempt_at=row.get("next_attempt_at"),
            last_error=row.get("last_error"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @classmethod
    async def insert_event(
        cls,
        event_type: str,
        payload: dict[str, Any],
        dedupe_key: str,
        next_attempt_at: datetime,
        now: datetime,
    ) -> AutomationEvent:
        """Insert a pending event. Raises DuplicateError on a repeated dedupe_key."""

        query = f"""
            INSERT INTO automation_events (
                event_type, payload_json, status, attempts, next_attempt_at,
                last_error, dedupe_key, created_at, updated_at
            )
            VALUES (%s, %s, 'pending', 0, %s, NULL, %s, %s, %s)
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (event_type, Jsonb(payload), next_attempt_at, dedupe_key, now, now))
        return cls._row_to_event(row)

    @classmethod
    async def get_event(cls, event_id: str) -> AutomationEvent | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM automation_events WHERE id = %s"
        return cls._row_to_event(await fetch_one(query, (event_id,)))

    @classmethod
    async def list_events(
        cls, status: str | None = None, event_type: str | None = None, limit: int = 50
    ) -> list[AutomationEvent]:
        clauses = []
        params: list[Any] = []
        if status:
            clauses.append("status = %s")
            params.append(status)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM automation_events
            {where}
            ORDER BY created_at DESC
            LIMIT %s
        """
        params.append(limit)
        rows = await fetch_all(query, tuple(params))
        return [cls._row_to_event(row) for row in rows]

    @classmethod
    @with_db_retry()
    async def fetch_dispatchable(cls, now: datetime, limit: int) -> list[AutomationEvent]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM automation_events
            WHERE status = 'pending'
              AND next_attempt_at <= %s
            ORDER BY created_at ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (now, limit))
        return [cls._row_to_event(row) for row in rows]

    @staticmethod
    async def mark_sent(event_id: str, now: datetime) -> bool:
        query = """
            UPDATE automation_events
            SET status = %s, next_attempt_at = NULL, last_error = NULL, updated_at = %s
            WHERE id = %s AND status = %s
        """
        return await execute_query(query, (EVENT_SENT, now, event_id, EVENT_PENDING)) == 1

    @staticmethod
    async def record_failure(
        event_id: str,
        expected_attempts: int,
        status: str,
        next_attempt_at: datetime | None,
        last_error: str,
        now: datetime,
    ) -> bool:
        """Bump attempts after a failed dispatch, guarded on the attempts value read."""

        query = """
            UPDATE automation_events
            SET status = %s,
                attempts = attempts + 1,
                next_attempt_at = %s,
                last_error = %s,
                updated_at = %s
            WHERE id = %s
              AND status = %s
              AND attempts = %s
        """
        updated = await execute_query(
            query, (status, next_attempt_at, last_error, now, event_id, EVENT_PENDING, expected_attempts)
        )
        return updated == 1

    @classmethod
    async def reset_for_retry(cls, event_id: str, now: datetime) -> AutomationEvent | None:
        """Force an event back to pending and due now; attempts are kept."""

        query = f"""
            UPDATE automation_events
            SET status = %s, next_attempt_at = %s, last_error = NULL, updated_at = %s
            WHERE id = %s
            RETURNING {cls.SELECT_COLUMNS}
        """
        return cls._row_to_event(await fetch_one(query, (EVENT_PENDING, now, now, event_id)))
