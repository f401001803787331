"""
Outbound eligibility decision.

Evaluated by the runner before each attempt:
- DNC (always blocks, even service notices)
- consent / allowed channels from comm_preferences
- quiet hours in the customer's timezone (window may cross midnight)
- unknown party when no verified identity link resolves the address

Every decision is written to the audit log.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.features.outbound.domain import OutboundJob
from app.features.outbound.repository import ComplianceRepository
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger
from app.security.addresses import normalize_address

logger = get_logger(__name__)

REASON_DNC = "DNC"
REASON_QUIET_HOURS = "quiet_hours"
REASON_CHANNEL_NOT_ALLOWED = "channel_not_allowed"
REASON_MISSING_CONSENT = "missing_consent"
REASON_UNKNOWN_PARTY = "unknown_party"


@dataclass(slots=True)
class EligibilityResult:
    eligible: bool
    normalized_destination: str
    reasons: list[str] = field(default_factory=list)
    resolved_bank_customer_id: str | None = None


def _parse_allowed_channels(allowed: Any) -> list[str] | None:
    if not allowed:
        return None
    if isinstance(allowed, list):
        return allowed
    if isinstance(allowed, str):
        try:
            parsed = json.loads(allowed)
        except ValueError:
            return None
        return parsed if isinstance(parsed, list) else None
    return None


def _to_minutes(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    try:
        parts = str(value).split(":")
        return int(parts[0]) * 60 + int(parts[1])
    except (ValueError, IndexError):
        return None


def in_quiet_hours(now: datetime, tz_name: str | None, quiet_start: Any, quiet_end: Any) -> bool:
    """Whether now falls inside [start, end) local time; the window may wrap past midnight."""
    start = _to_minutes(quiet_start)
    end = _to_minutes(quiet_end)
    if start is None or end is None or start == end:
        return False

    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone in comm preferences", timezone=tz_name)
        tz = ZoneInfo("UTC")

    local = now.astimezone(tz)
    current = local.hour * 60 + local.minute
    if start < end:
        return start <= current < end
    return current >= start or current < end


class OutboundEligibility:
    """Compliance gate consulted by the runner."""

    def __init__(self, repository=ComplianceRepository, audit=audit_logger):
        self.repository = repository
        self.audit = audit

    async def _resolve_customer(self, job: OutboundJob, destination: str) -> tuple[str | None, bool]:
        if job.bank_customer_id:
            return job.bank_customer_id, True

        link = await self.repository.get_identity_link(job.channel, destination)
        if not link or not link.get("bank_customer_id"):
            return None, False
        return str(link["bank_customer_id"]), bool(link.get("is_verified"))

    async def evaluate(self, job: OutboundJob, now: datetime) -> EligibilityResult:
        destination = normalize_address(job.channel, job.target_address)
        reasons: list[str] = []
        prefs_view: dict[str, Any] = {"loaded": False}

        customer_id, verified = await self._resolve_customer(job, destination)
        if not customer_id or not verified:
            reasons.append(REASON_UNKNOWN_PARTY)

        if customer_id:
            prefs = await self.repository.get_comm_preferences(customer_id)
            if not prefs:
                reasons.append(REASON_MISSING_CONSENT)
            else:
                prefs_view["loaded"] = True
                if prefs.get("do_not_contact") is True:
                    reasons.append(REASON_DNC)

                allowed = _parse_allowed_channels(prefs.get("allowed_channels"))
                if not allowed:
                    reasons.append(REASON_MISSING_CONSENT)
                elif job.channel not in allowed:
                    reasons.append(REASON_CHANNEL_NOT_ALLOWED)

                quiet = in_quiet_hours(
                    now,
                    prefs.get("timezone"),
                    prefs.get("quiet_hours_start"),
                    prefs.get("quiet_hours_end"),
                )
                prefs_view["quiet_hours_hit"] = quiet
                override = job.campaign_purpose == "service_notice" and job.payload.get("service_notice_override") is True
                if quiet and not override:
                    reasons.append(REASON_QUIET_HOURS)

        result = EligibilityResult(
            eligible=not reasons,
            normalized_destination=destination,
            reasons=reasons,
            resolved_bank_customer_id=customer_id,
        )

        await self.audit.log(
            event_type="outbound_eligibility_decision",
            context="compliance",
            actor_id="outbound_runner",
            bank_customer_id=customer_id,
            input_redacted={
                "outbound_job_id": job.id,
                "campaign_id": job.campaign_id,
                "channel": job.channel,
                "campaign_purpose": job.campaign_purpose,
                "now": now.isoformat(),
            },
            output_redacted={"eligible": result.eligible, "reasons": reasons, "prefs": prefs_view},
        )
        return result
