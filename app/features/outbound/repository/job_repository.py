"""
Persistence layer for the outbound feature.

CRUD only. Every status change is a conditional UPDATE ("... WHERE status
= <expected>") and the caller learns from the affected-row count whether
it won; no business rule lives here.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import (
    PersistenceError,
    execute_query,
    execute_transaction,
    fetch_all,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from app.features.outbound.domain import (
    STATUS_AWAITING_VERIFICATION,
    STATUS_CANCELLED,
    STATUS_QUEUED,
    JobTransition,
    OutboundAttempt,
    OutboundCampaign,
    OutboundJob,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class OutboundRepositoryError(PersistenceError):
    """More specific exception for repository failures."""


class OutboundJobRepository:
    """Persistence helpers backing outbound campaigns, jobs and attempts."""

    JOB_SELECT_COLUMNS = """
        j.id, j.campaign_id, j.bank_customer_id, j.channel, j.target_address,
        j.payload_json, j.status, j.scheduled_at, j.next_attempt_at,
        j.attempt_count, j.max_attempts, j.outcome_code, j.last_error_code,
        j.last_error_message, j.cancel_reason_code, j.cancel_reason_message,
        j.created_at, j.updated_at, c.purpose AS campaign_purpose
    """
    JOB_FROM = "outbound_jobs j LEFT JOIN outbound_campaigns c ON c.id = j.campaign_id"

    CAMPAIGN_SELECT_COLUMNS = "id, name, purpose, allowed_channels, status, created_at, updated_at"

    @classmethod
    def _row_to_job(cls, row: dict | None) -> OutboundJob | None:
        if not row:
            return None

        return OutboundJob(
            id=str(row["id"]),
            campaign_id=str(row["campaign_id"]),
            bank_customer_id=str(row["bank_customer_id"]) if row.get("bank_customer_id") else None,
            channel=row["channel"],
            target_address=row["target_address"],
            payload=dict(row.get("payload_json") or {}),
            status=row["status"],
            scheduled_at=row.get("scheduled_at"),
            next_attempt_at=row.get("next_attempt_at"),
            attempt_count=row.get("attempt_count") or 0,
            max_attempts=row["max_attempts"],
            outcome_code=row.get("outcome_code"),
            last_error_code=row.get("last_error_code"),
            last_error_message=row.get("last_error_message"),
            cancel_reason_code=row.get("cancel_reason_code"),
            cancel_reason_message=row.get("cancel_reason_message"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            campaign_purpose=row.get("campaign_purpose"),
        )

    @classmethod
    def _row_to_campaign(cls, row: dict | None) -> OutboundCampaign | None:
        if not row:
            return None

        return OutboundCampaign(
            id=str(row["id"]),
            name=row["name"],
            purpose=row["purpose"],
            allowed_channels=list(row["allowed_channels"]) if row.get("allowed_channels") else None,
            status=row["status"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_attempt(row: dict) -> OutboundAttempt:
        return OutboundAttempt(
            id=str(row["id"]),
            outbound_job_id=str(row["outbound_job_id"]),
            attempt_number=row["attempt_number"],
            channel=row["channel"],
            provider=row["provider"],
            status=row["status"],
            provider_message_id=row.get("provider_message_id"),
            provider_call_sid=row.get("provider_call_sid"),
            outcome_code=row.get("outcome_code"),
            error_code=row.get("error_code"),
            error_message=row.get("error_message"),
            created_at=row.get("created_at"),
        )

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    @classmethod
    async def create_campaign(
        cls, name: str, purpose: str, allowed_channels: list[str] | None, now: datetime
    ) -> OutboundCampaign:
        query = f"""
            INSERT INTO outbound_campaigns (name, purpose, allowed_channels, status, created_at, updated_at)
            VALUES (%s, %s, %s, 'active', %s, %s)
            RETURNING {cls.CAMPAIGN_SELECT_COLUMNS}
        """
        channels = Jsonb(allowed_channels) if allowed_channels else None
        row = await fetch_one(query, (name, purpose, channels, now, now))
        if not row:
            raise OutboundRepositoryError("Failed to create outbound campaign", operation="create_campaign")

        logger.info("Outbound campaign created", campaign_id=str(row["id"]), purpose=purpose)
        return cls._row_to_campaign(row)

    @classmethod
    async def get_campaign(cls, campaign_id: str) -> OutboundCampaign | None:
        query = f"SELECT {cls.CAMPAIGN_SELECT_COLUMNS} FROM outbound_campaigns WHERE id = %s"
        return cls._row_to_campaign(await fetch_one(query, (campaign_id,)))

    @classmethod
    async def list_campaigns(cls, limit: int = 200) -> list[OutboundCampaign]:
        query = f"""
            SELECT {cls.CAMPAIGN_SELECT_COLUMNS}
            FROM outbound_campaigns
            ORDER BY updated_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (limit,))
        return [cls._row_to_campaign(row) for row in rows]

    # ------------------------------------------------------------------
    # Jobs: create / read
    # ------------------------------------------------------------------

    @classmethod
    async def create_job(
        cls,
        *,
        campaign_id: str,
        bank_customer_id: str | None,
        channel: str,
        target_address: str,
        payload: dict[str, Any],
        scheduled_at: datetime,
        max_attempts: int,
        now: datetime,
    ) -> OutboundJob:
        """Insert a queued job due at scheduled_at."""

        query = """
            INSERT INTO outbound_jobs (
                campaign_id, bank_customer_id, channel, target_address, payload_json,
                status, scheduled_at, next_attempt_at, attempt_count, max_attempts,
                created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, 'queued', %s, %s, 0, %s, %s, %s)
            RETURNING id
        """
        row = await fetch_one(
            query,
            (
                campaign_id,
                bank_customer_id,
                channel,
                target_address,
                Jsonb(payload),
                scheduled_at,
                scheduled_at,
                max_attempts,
                now,
                now,
            ),
        )
        if not row:
            raise OutboundRepositoryError("Failed to create outbound job", operation="create_job")

        job = await cls.get_job(str(row["id"]))
        logger.info("Outbound job created", job_id=job.id, channel=channel, campaign_id=campaign_id)
        return job

    @classmethod
    async def get_job(cls, job_id: str) -> OutboundJob | None:
        query = f"SELECT {cls.JOB_SELECT_COLUMNS} FROM {cls.JOB_FROM} WHERE j.id = %s"
        return cls._row_to_job(await fetch_one(query, (job_id,)))

    @classmethod
    async def list_jobs(
        cls,
        status: str | None,
        limit: int,
        cursor: tuple[str, str] | None = None,
    ) -> list[OutboundJob]:
        """
        Page through jobs on (created_at desc, id desc).

        Args:
            status: Optional status filter
            limit: Rows to return
            cursor: (created_at iso, id) of the last row of the previous page
        """
        clauses = []
        params: list[Any] = []
        if status:
            clauses.append("j.status = %s")
            params.append(status)
        if cursor:
            clauses.append("(j.created_at, j.id) < (%s::timestamptz, %s::uuid)")
            params.extend(cursor)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM {cls.JOB_FROM}
            {where}
            ORDER BY j.created_at DESC, j.id DESC
            LIMIT %s
        """
        params.append(limit)
        rows = await fetch_all(query, tuple(params))
        return [cls._row_to_job(row) for row in rows]

    @classmethod
    async def list_attempts(cls, job_id: str) -> list[OutboundAttempt]:
        query = """
            SELECT id, outbound_job_id, attempt_number, channel, provider, status,
                   provider_message_id, provider_call_sid, outcome_code,
                   error_code, error_message, created_at
            FROM outbound_attempts
            WHERE outbound_job_id = %s
            ORDER BY attempt_number ASC
        """
        rows = await fetch_all(query, (job_id,))
        return [cls._row_to_attempt(row) for row in rows]

    @staticmethod
    async def last_attempt_times(job_ids: list[str]) -> dict[str, datetime]:
        """Most recent attempt timestamp per job."""
        if not job_ids:
            return {}

        query = """
            SELECT outbound_job_id, MAX(created_at) AS last_attempt_at
            FROM outbound_attempts
            WHERE outbound_job_id = ANY(%s::uuid[])
            GROUP BY outbound_job_id
        """
        rows = await fetch_all(query, (job_ids,))
        return {str(row["outbound_job_id"]): row["last_attempt_at"] for row in rows}

    @staticmethod
    async def audit_tail(job_id: str, limit: int = 50) -> list[dict[str, Any]]:
        query = """
            SELECT event_type, success, created_at
            FROM audit_logs
            WHERE input_redacted->>'outbound_job_id' = %s
               OR input_redacted->>'job_id' = %s
            ORDER BY created_at DESC
            LIMIT %s
        """
        return await fetch_all(query, (job_id, job_id, limit))

    # ------------------------------------------------------------------
    # Runner
    # ------------------------------------------------------------------

    @classmethod
    @with_db_retry()
    async def fetch_due_jobs(cls, now: datetime, limit: int) -> list[OutboundJob]:
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM {cls.JOB_FROM}
            WHERE j.status = 'queued'
              AND j.next_attempt_at <= %s
            ORDER BY j.next_attempt_at ASC, j.created_at ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (now, limit))
        return [cls._row_to_job(row) for row in rows]

    @staticmethod
    async def claim_job(
        job_id: str, expected_attempt_count: int, lease_until: datetime, now: datetime
    ) -> int | None:
        """
        Reserve the next attempt number for a queued job.

        Pushes next_attempt_at out to the lease so the job is not re-selected
        while the send is in flight. Returns the new attempt_count, or None
        when another invocation changed the job first or no attempts remain.
        """
        query = """
            UPDATE outbound_jobs
            SET attempt_count = attempt_count + 1,
                next_attempt_at = %s,
                updated_at = %s
            WHERE id = %s
              AND status = 'queued'
              AND attempt_count = %s
              AND attempt_count < max_attempts
            RETURNING attempt_count
        """
        return await fetch_val(query, (lease_until, now, job_id, expected_attempt_count))

    @staticmethod
    async def fail_exhausted(job_id: str, error_code: str, error_message: str, now: datetime) -> bool:
        """Mark a queued job with no attempts left as failed."""
        query = """
            UPDATE outbound_jobs
            SET status = 'failed',
                next_attempt_at = NULL,
                outcome_code = 'failed_delivery',
                last_error_code = %s,
                last_error_message = %s,
                updated_at = %s
            WHERE id = %s
              AND status = 'queued'
              AND attempt_count >= max_attempts
        """
        updated = await execute_query(query, (error_code, error_message, now, job_id))
        return updated == 1

    @staticmethod
    async def complete_attempt(attempt: OutboundAttempt, transition: JobTransition, now: datetime) -> bool:
        """
        Append the attempt row and move the job in one transaction.

        The job update only applies while the job is still queued at this
        attempt number; the attempt row is kept either way. Returns whether
        the job row was updated.
        """
        insert_attempt = """
            INSERT INTO outbound_attempts (
                outbound_job_id, attempt_number, channel, provider, status,
                provider_message_id, provider_call_sid, outcome_code,
                error_code, error_message, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        update_job = """
            UPDATE outbound_jobs
            SET status = %s,
                next_attempt_at = %s,
                outcome_code = COALESCE(%s, outcome_code),
                last_error_code = COALESCE(%s, last_error_code),
                last_error_message = COALESCE(%s, last_error_message),
                payload_json = payload_json || %s,
                updated_at = %s
            WHERE id = %s
              AND status = 'queued'
              AND attempt_count = %s
        """
        _, updated = await execute_transaction(
            [
                (
                    insert_attempt,
                    (
                        attempt.outbound_job_id,
                        attempt.attempt_number,
                        attempt.channel,
                        attempt.provider,
                        attempt.status,
                        attempt.provider_message_id,
                        attempt.provider_call_sid,
                        attempt.outcome_code,
                        attempt.error_code,
                        attempt.error_message,
                        now,
                    ),
                ),
                (
                    update_job,
                    (
                        transition.status,
                        transition.next_attempt_at,
                        transition.outcome_code,
                        transition.last_error_code,
                        transition.last_error_message,
                        Jsonb(transition.payload_patch or {}),
                        now,
                        attempt.outbound_job_id,
                        attempt.attempt_number,
                    ),
                ),
            ]
        )
        return updated == 1

    @staticmethod
    async def set_customer(job_id: str, bank_customer_id: str, now: datetime) -> None:
        query = """
            UPDATE outbound_jobs
            SET bank_customer_id = %s, updated_at = %s
            WHERE id = %s AND bank_customer_id IS NULL
        """
        await execute_query(query, (bank_customer_id, now, job_id))

    @classmethod
    async def cancel_job(
        cls,
        job_id: str,
        expected_statuses: tuple[str, ...],
        reason_code: str,
        reason_message: str | None,
        outcome_code: str | None,
        now: datetime,
    ) -> bool:
        """Cancel only while the job is in one of expected_statuses."""

        query = """
            UPDATE outbound_jobs
            SET status = %s,
                cancel_reason_code = %s,
                cancel_reason_message = %s,
                outcome_code = %s,
                next_attempt_at = NULL,
                updated_at = %s
            WHERE id = %s
              AND status = ANY(%s)
        """
        updated = await execute_query(
            query,
            (STATUS_CANCELLED, reason_code, reason_message, outcome_code, now, job_id, list(expected_statuses)),
        )
        return updated == 1

    # ------------------------------------------------------------------
    # Verification gate
    # ------------------------------------------------------------------

    @classmethod
    async def find_awaiting_verification(
        cls, bank_customer_id: str, channel: str, target_address: str, limit: int
    ) -> list[OutboundJob]:
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM {cls.JOB_FROM}
            WHERE j.status = %s
              AND j.bank_customer_id = %s
              AND j.channel = %s
              AND j.target_address = %s
            ORDER BY j.created_at ASC
            LIMIT %s
        """
        rows = await fetch_all(
            query, (STATUS_AWAITING_VERIFICATION, bank_customer_id, channel, target_address, limit)
        )
        return [cls._row_to_job(row) for row in rows]

    @staticmethod
    async def resume_verified(job_id: str, now: datetime) -> bool:
        """
        Requeue a job awaiting verification, marking its payload verified.

        The verified delivery always gets one attempt, so max_attempts is
        raised when the prompt used the last one.
        """

        query = """
            UPDATE outbound_jobs
            SET status = %s,
                next_attempt_at = %s,
                max_attempts = GREATEST(max_attempts, attempt_count + 1),
                payload_json = payload_json || %s,
                updated_at = %s
            WHERE id = %s
              AND status = %s
        """
        updated = await execute_query(
            query,
            (
                STATUS_QUEUED,
                now,
                Jsonb({"verification_state": "verified"}),
                now,
                job_id,
                STATUS_AWAITING_VERIFICATION,
            ),
        )
        return updated == 1

    # ------------------------------------------------------------------
    # Checkers / health
    # ------------------------------------------------------------------

    @classmethod
    @with_db_retry()
    async def fetch_stuck_awaiting(cls, updated_before: datetime) -> list[OutboundJob]:
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM {cls.JOB_FROM}
            WHERE j.status = %s
              AND j.updated_at < %s
            ORDER BY j.updated_at ASC
        """
        rows = await fetch_all(query, (STATUS_AWAITING_VERIFICATION, updated_before))
        return [cls._row_to_job(row) for row in rows]

    @staticmethod
    async def count_by_status_since(since: datetime) -> dict[str, int]:
        query = """
            SELECT status, COUNT(*) AS total
            FROM outbound_jobs
            WHERE created_at >= %s
            GROUP BY status
        """
        rows = await fetch_all(query, (since,))
        return {row["status"]: int(row["total"]) for row in rows}
