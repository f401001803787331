"""
Outbound job submission and admin operations.

Covers everything the admin API needs apart from running jobs: create
(with on-demand campaign), list with cursor pagination, detail, cancel,
campaign listing and the 24h health counts.
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError
from app.features.outbound.domain import (
    CAMPAIGN_PURPOSES,
    JOB_STATUSES,
    OUTCOME_CODES,
    STATUS_AWAITING_VERIFICATION,
    STATUS_CANCELLED,
    STATUS_QUEUED,
    OutboundCampaign,
    OutboundJob,
    OutboundPayload,
    default_max_attempts,
    normalize_status_filter,
)
from app.features.outbound.repository import OutboundJobRepository
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger
from app.security.addresses import CHANNELS, address_hint, normalize_address
from app.security.redaction import redact_sensitive

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50
DEFAULT_CANCEL_REASON = "cancelled_by_staff"


def _parse_cursor(cursor: str | None) -> tuple[str, str] | None:
    if not cursor:
        return None
    parts = cursor.strip().split("|")
    if len(parts) != 2 or not all(parts):
        raise ValidationError("Invalid cursor", field="cursor")
    return parts[0], parts[1]


def _format_cursor(job: OutboundJob) -> str:
    created = job.created_at.isoformat() if isinstance(job.created_at, datetime) else str(job.created_at)
    return f"{created}|{job.id}"


class OutboundJobService:
    """Admin-facing operations on outbound jobs and campaigns."""

    def __init__(self, repository=OutboundJobRepository, audit=audit_logger):
        self.repository = repository
        self.audit = audit

    async def _resolve_campaign(
        self, campaign_id: str | None, campaign: dict[str, Any] | None, now: datetime
    ) -> OutboundCampaign:
        if campaign_id:
            existing = await self.repository.get_campaign(campaign_id)
            if not existing:
                raise ValidationError(f"Unknown campaign: {campaign_id}", field="campaignId")
            return existing

        campaign = campaign or {}
        name = campaign.get("name")
        purpose = campaign.get("purpose")
        if not name or not purpose:
            raise ValidationError("Either campaignId or campaign {name, purpose} is required", field="campaign")
        if purpose not in CAMPAIGN_PURPOSES:
            raise ValidationError(f"Unsupported campaign purpose: {purpose}", field="campaign.purpose")

        allowed = campaign.get("allowed_channels") or campaign.get("allowedChannels")
        if allowed:
            unknown = [c for c in allowed if c not in CHANNELS]
            if unknown:
                raise ValidationError(f"Unsupported channels: {', '.join(unknown)}", field="campaign.allowedChannels")

        return await self.repository.create_campaign(name, purpose, list(allowed) if allowed else None, now)

    async def create_job(
        self,
        *,
        channel: str | None,
        target_address: str | None,
        now: datetime,
        campaign_id: str | None = None,
        campaign: dict[str, Any] | None = None,
        bank_customer_id: str | None = None,
        payload: dict[str, Any] | None = None,
        scheduled_at: datetime | None = None,
        max_attempts: int | None = None,
        actor_id: str | None = None,
    ) -> OutboundJob:
        """
        Validate and queue a new job.

        Raises:
            ValidationError: missing channel/target, unknown channel or
                campaign, channel outside the campaign's allowed set, or a
                malformed payload.
        """
        if not channel or not target_address:
            raise ValidationError("channel and targetAddress are required")
        if channel not in CHANNELS:
            raise ValidationError(f"Unsupported channel: {channel}", field="channel")

        target = normalize_address(channel, target_address)
        if not target or target in ("+", "whatsapp:+"):
            raise ValidationError("targetAddress is not a valid address", field="targetAddress")

        try:
            document = OutboundPayload.model_validate(payload or {}).model_dump(exclude_unset=True)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid payloadJson: {e.errors()[0]['msg']}", field="payloadJson") from e

        if max_attempts is not None and max_attempts < 1:
            raise ValidationError("maxAttempts must be at least 1", field="maxAttempts")

        resolved = await self._resolve_campaign(campaign_id, campaign, now)
        if resolved.allowed_channels and channel not in resolved.allowed_channels:
            raise ValidationError(f"Channel {channel} not allowed for campaign", field="channel")

        job = await self.repository.create_job(
            campaign_id=resolved.id,
            bank_customer_id=bank_customer_id,
            channel=channel,
            target_address=target,
            payload=document,
            scheduled_at=scheduled_at or now,
            max_attempts=max_attempts or default_max_attempts(channel),
            now=now,
        )

        await self.audit.log(
            event_type="outbound_job_created",
            actor_type="agent",
            actor_id=actor_id,
            bank_customer_id=bank_customer_id,
            input_redacted={
                "campaign_id": resolved.id,
                "channel": channel,
                "target_address": target,
                "scheduled_at": (scheduled_at or now).isoformat(),
                "max_attempts": job.max_attempts,
            },
            output_redacted={"outbound_job_id": job.id, "status": job.status},
        )
        return job

    async def list_jobs(
        self, status: str | None = None, limit: int | None = None, cursor: str | None = None
    ) -> dict[str, Any]:
        """One page of jobs, newest first, with redaction-safe address hints."""
        status = normalize_status_filter(status)
        if status and status not in JOB_STATUSES:
            raise ValidationError(f"Unknown status: {status}", field="status")

        limit = min(MAX_PAGE_SIZE, max(1, limit or DEFAULT_PAGE_SIZE))
        rows = await self.repository.list_jobs(status, limit + 1, _parse_cursor(cursor))
        page = rows[:limit]

        last_attempts = await self.repository.last_attempt_times([job.id for job in page])
        items = [
            {
                "id": job.id,
                "created_at": job.created_at,
                "status": job.status,
                "channel": job.channel,
                "to_hint": address_hint(job.target_address),
                "campaign_id": job.campaign_id,
                "attempts_count": job.attempt_count,
                "max_attempts": job.max_attempts,
                "last_attempt_at": last_attempts.get(job.id),
                "last_error_hint": job.last_error_code,
            }
            for job in page
        ]
        next_cursor = _format_cursor(page[-1]) if len(rows) > limit and page else None
        return {"items": items, "next_cursor": next_cursor}

    async def get_job_detail(self, job_id: str) -> dict[str, Any] | None:
        """Job + ordered attempts + recent audit tail, or None."""
        job = await self.repository.get_job(job_id)
        if not job:
            return None

        attempts = await self.repository.list_attempts(job_id)
        audit_tail = await self.repository.audit_tail(job_id)
        return {
            "job": {
                "id": job.id,
                "status": job.status,
                "channel": job.channel,
                "to_hint": address_hint(job.target_address),
                "campaign_id": job.campaign_id,
                "campaign_purpose": job.campaign_purpose,
                "attempt_count": job.attempt_count,
                "max_attempts": job.max_attempts,
                "next_attempt_at": job.next_attempt_at,
                "outcome_code": job.outcome_code,
                "last_error_code": job.last_error_code,
                "cancel_reason_code": job.cancel_reason_code,
                "created_at": job.created_at,
                "updated_at": job.updated_at,
                "payload_redacted": redact_sensitive(job.payload, "outbound"),
            },
            "attempts": [
                {
                    "attempt_no": a.attempt_number,
                    "status": a.status,
                    "provider": a.provider,
                    "outcome_code": a.outcome_code,
                    "error_code": a.error_code,
                    "created_at": a.created_at,
                    "provider_message_id": a.provider_message_id or a.provider_call_sid,
                }
                for a in attempts
            ],
            "audit_tail": [
                {"event_type": e["event_type"], "success": e.get("success"), "created_at": e["created_at"]}
                for e in audit_tail
            ],
        }

    async def cancel_job(
        self,
        job_id: str,
        now: datetime,
        reason_code: str | None = None,
        reason_message: str | None = None,
        outcome_code: str | None = None,
        actor_id: str | None = None,
    ) -> OutboundJob | None:
        """
        Cancel a non-terminal job.

        Cancelling a terminal job is a no-op that returns it unchanged.
        Returns None for an unknown id.
        """
        if outcome_code and outcome_code not in OUTCOME_CODES:
            raise ValidationError(f"Unknown outcome code: {outcome_code}", field="outcomeCode")

        job = await self.repository.get_job(job_id)
        if not job:
            return None
        if job.is_terminal:
            logger.info("Cancel ignored for terminal job", job_id=job_id, status=job.status)
            return job

        reason_code = reason_code or DEFAULT_CANCEL_REASON
        applied = await self.repository.cancel_job(
            job_id,
            (STATUS_QUEUED, STATUS_AWAITING_VERIFICATION),
            reason_code,
            reason_message,
            outcome_code,
            now,
        )
        current = await self.repository.get_job(job_id)
        if not applied:
            logger.info("Cancel lost to a concurrent transition", job_id=job_id, status=current.status if current else None)
            return current

        await self.audit.log(
            event_type="outbound_job_cancelled",
            actor_type="agent",
            actor_id=actor_id,
            bank_customer_id=job.bank_customer_id,
            input_redacted={"outbound_job_id": job_id, "reason_code": reason_code, "outcome_code": outcome_code},
            output_redacted={"status": STATUS_CANCELLED, "previous_status": job.status},
        )
        return current

    async def list_campaigns(self, limit: int = 200) -> list[OutboundCampaign]:
        return await self.repository.list_campaigns(limit)

    async def health(self, now: datetime) -> dict[str, Any]:
        """Job counts per status created in the last 24 hours."""
        since = now - timedelta(hours=24)
        raw = await self.repository.count_by_status_since(since)
        counts = {status: raw.get(status, 0) for status in JOB_STATUSES}
        return {
            "window_hours": 24,
            "since": since.isoformat(),
            "total": sum(counts.values()),
            "counts": counts,
        }


outbound_job_service = OutboundJobService()
