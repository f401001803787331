"""
Domain models for the outbound delivery feature.

Campaigns group jobs by purpose; a job is driven from queued to a terminal
state one attempt at a time; every attempt leaves an append-only row.
These dataclasses carry no persistence logic so the runner, gate and API
can share them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

# Job status values
STATUS_QUEUED = "queued"
STATUS_AWAITING_VERIFICATION = "awaiting_verification"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

JOB_STATUSES = (
    STATUS_QUEUED,
    STATUS_AWAITING_VERIFICATION,
    STATUS_SENT,
    STATUS_FAILED,
    STATUS_CANCELLED,
)
TERMINAL_STATUSES = frozenset({STATUS_SENT, STATUS_FAILED, STATUS_CANCELLED})

CAMPAIGN_PURPOSES = ("fraud_alert", "kyc_update", "collections", "case_followup", "service_notice")
STEP_UP_PURPOSES = frozenset({"fraud_alert", "collections", "kyc_update", "case_followup"})

# Outcome codes written on jobs and attempts
OUTCOME_SUCCESS_VERIFIED = "success_verified"
OUTCOME_SUCCESS_UNVERIFIED = "success_unverified_info_only"
OUTCOME_FAILED_DELIVERY = "failed_delivery"
OUTCOME_OPT_OUT = "opt_out"

OUTCOME_CODES = (
    OUTCOME_SUCCESS_VERIFIED,
    OUTCOME_SUCCESS_UNVERIFIED,
    "no_answer",
    "busy",
    OUTCOME_FAILED_DELIVERY,
    OUTCOME_OPT_OUT,
    "wrong_party",
    "callback_scheduled",
    "escalated_to_human",
)

VERIFICATION_PENDING = "pending"
VERIFICATION_VERIFIED = "verified"


def default_max_attempts(channel: str) -> int:
    """Voice gets one retry; messaging channels get two."""
    return 2 if channel == "voice" else 3


def normalize_status_filter(status: str | None) -> str | None:
    """API accepts the US spelling "canceled"."""
    if not status:
        return None
    status = status.strip().lower()
    return STATUS_CANCELLED if status == "canceled" else status


class OutboundPayload(BaseModel):
    """
    Structured job payload.

    Known keys are typed; anything else a campaign wants to carry is kept.
    """

    model_config = ConfigDict(extra="allow")

    text: str | None = None
    final_text: str | None = None
    subject: str | None = None
    html: str | None = None
    sensitive: bool = False
    verification_state: Literal["pending", "verified"] | None = None
    service_notice_override: bool = False


@dataclass(slots=True)
class OutboundCampaign:
    """Represents an outbound_campaigns row."""

    id: str
    name: str
    purpose: str
    allowed_channels: list[str] | None
    status: str  # "active" or "paused"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class OutboundJob:
    """Represents an outbound_jobs row joined with its campaign purpose."""

    id: str
    campaign_id: str
    channel: str
    target_address: str
    status: str
    attempt_count: int
    max_attempts: int
    bank_customer_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    scheduled_at: datetime | None = None
    next_attempt_at: datetime | None = None
    outcome_code: str | None = None
    last_error_code: str | None = None
    last_error_message: str | None = None
    cancel_reason_code: str | None = None
    cancel_reason_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    campaign_purpose: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_verified(self) -> bool:
        return self.payload.get("verification_state") == VERIFICATION_VERIFIED


@dataclass(slots=True)
class OutboundAttempt:
    """Represents an outbound_attempts row (append-only)."""

    outbound_job_id: str
    attempt_number: int
    channel: str
    provider: str
    status: str  # "sent" | "failed" | ...
    provider_message_id: str | None = None
    provider_call_sid: str | None = None
    outcome_code: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    id: str | None = None


@dataclass(slots=True)
class JobTransition:
    """Job columns written together with an attempt row."""

    status: str
    next_attempt_at: datetime | None = None
    outcome_code: str | None = None
    last_error_code: str | None = None
    last_error_message: str | None = None
    payload_patch: dict[str, Any] | None = None


@dataclass(slots=True)
class JobResult:
    """Outcome of one per-job processing call."""

    job_id: str
    status: str
    attempt_number: int | None = None
    error_code: str | None = None
    skipped: bool = False
