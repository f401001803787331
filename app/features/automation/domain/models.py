"""
Domain models for the automation outbox and admin inbox.

An AutomationEvent is a fact recorded exactly once (unique dedupe_key);
the dispatcher turns it into at most one AdminInboxItem. Event payloads
are validated per event type before they are stored.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class AutomationEventTypes:
    """Closed set of event types producers may emit."""

    FRAUD_CASE_CREATED = "fraud_case_created"
    OUTBOUND_FAILED_MAX_ATTEMPTS = "outbound_failed_max_attempts"
    DAILY_OPERATIONAL_SUMMARY_READY = "daily_operational_summary_ready"
    OTP_VERIFICATION_STUCK = "otp_verification_stuck"
    CALL_ANALYSIS_READY = "call_analysis_ready"

    ALL = (
        FRAUD_CASE_CREATED,
        OUTBOUND_FAILED_MAX_ATTEMPTS,
        DAILY_OPERATIONAL_SUMMARY_READY,
        OTP_VERIFICATION_STUCK,
        CALL_ANALYSIS_READY,
    )


# Event status
EVENT_PENDING = "pending"
EVENT_SENT = "sent"
EVENT_FAILED = "failed"
EVENT_STATUSES = (EVENT_PENDING, EVENT_SENT, EVENT_FAILED)

# Inbox
SEVERITIES = ("info", "warn", "error")
INBOX_STATUSES = ("open", "acknowledged", "resolved", "dismissed")
# Actions only apply while an item is still open
INBOX_ACTIONABLE_STATUSES = ("open", "acknowledged")
INBOX_ACTIONS = {
    "acknowledge": "acknowledged",
    "resolve": "resolved",
    "dismiss": "dismissed",
}

LinkKind = Literal["conversation", "case", "outbound_job", "daily_report"]


class LinkRef(BaseModel):
    """Tagged reference from an inbox item to the thing it is about."""

    kind: LinkKind
    id: str | None = None


class _EventPayload(BaseModel):
    model_config = ConfigDict(extra="allow")


class FraudCaseCreatedPayload(_EventPayload):
    case_id: str | None = None
    case_number: str | None = None


class OutboundFailedMaxAttemptsPayload(_EventPayload):
    outbound_job_id: str
    channel: str
    target_hint: str | None = None
    attempt_count: int
    max_attempts: int
    last_error_code: str | None = None
    last_error_message: str | None = None
    at: str | None = None


class OtpVerificationStuckPayload(_EventPayload):
    outbound_job_id: str
    channel: str
    target_hint: str | None = None
    stuck_minutes: int
    updated_at: str | None = None
    at: str | None = None


class DailyOperationalSummaryPayload(_EventPayload):
    date: str
    summary: dict[str, Any]
    report_id: str | None = None
    at: str | None = None


class CallAnalysisReadyPayload(_EventPayload):
    analysis_id: str
    conversation_id: str
    provider_call_id: str | None = None
    escalation_required: bool | None = None
    compliance_verified: bool | None = None
    quality_score: float | None = None
    customer_frustrated: bool | None = None
    issue_resolved: bool | None = None
    supervisor_review_needed: bool | None = None
    issue_type: str | None = None
    issue_severity: str | None = None
    at: str | None = None


EVENT_PAYLOAD_SCHEMAS: dict[str, type[_EventPayload]] = {
    AutomationEventTypes.FRAUD_CASE_CREATED: FraudCaseCreatedPayload,
    AutomationEventTypes.OUTBOUND_FAILED_MAX_ATTEMPTS: OutboundFailedMaxAttemptsPayload,
    AutomationEventTypes.OTP_VERIFICATION_STUCK: OtpVerificationStuckPayload,
    AutomationEventTypes.DAILY_OPERATIONAL_SUMMARY_READY: DailyOperationalSummaryPayload,
    AutomationEventTypes.CALL_ANALYSIS_READY: CallAnalysisReadyPayload,
}


@dataclass(slots=True)
class AutomationEvent:
    """Represents an automation_events row."""

    id: str
    event_type: str
    payload: dict[str, Any]
    status: str
    attempts: int
    dedupe_key: str
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class AdminInboxItem:
    """Represents an admin_inbox_items row."""

    id: str
    type: str
    severity: str
    title: str
    status: str
    dedupe_key: str
    body: str | None = None
    link_ref: dict[str, Any] | None = None
    assigned_to: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class InboxItemDraft:
    """An inbox item about to be inserted."""

    type: str
    severity: str
    title: str
    body: str
    link_ref: LinkRef
    dedupe_key: str


@dataclass(slots=True)
class EmitResult:
    """Outcome of an outbox emission; created is False for a deduped repeat."""

    ok: bool
    created: bool = False
    error: str | None = None
