"""
Event -> inbox item templates used by the dispatcher.
"""

from typing import Any

from app.features.automation.domain import AutomationEvent, AutomationEventTypes, InboxItemDraft, LinkRef

SEPARATOR = " · "


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _fraud_case_created(payload: dict) -> tuple[str, str, str, LinkRef]:
    case_number = _text(payload.get("case_number"))
    body = f"Fraud case {case_number} created." if case_number else "Fraud case created."
    return "warn", "New fraud case", body, LinkRef(kind="case", id=_text(payload.get("case_id")))


def _outbound_failed(payload: dict) -> tuple[str, str, str, LinkRef]:
    parts = []
    if channel := _text(payload.get("channel")):
        parts.append(f"Channel: {channel}")
    if hint := _text(payload.get("target_hint")):
        parts.append(f"To: {hint}")
    if error := _text(payload.get("last_error_message") or payload.get("last_error_code")):
        parts.append(f"Last error: {error}")
    body = SEPARATOR.join(parts) if parts else "Outbound job reached max attempts."
    return "error", "Outbound intervention needed", body, LinkRef(
        kind="outbound_job", id=_text(payload.get("outbound_job_id"))
    )


def _daily_summary(payload: dict) -> tuple[str, str, str, LinkRef]:
    date = _text(payload.get("date")) or "today"
    report_id = _text(payload.get("report_id")) or f"daily-{date}"
    return "info", "Daily report ready", f"Daily operational summary ready for {date}.", LinkRef(
        kind="daily_report", id=report_id
    )


def _otp_stuck(payload: dict) -> tuple[str, str, str, LinkRef]:
    parts = []
    if channel := _text(payload.get("channel")):
        parts.append(f"Channel: {channel}")
    if hint := _text(payload.get("target_hint")):
        parts.append(f"To: {hint}")
    if payload.get("stuck_minutes") is not None:
        parts.append(f"Stuck for {payload['stuck_minutes']} minutes")
    body = SEPARATOR.join(parts) if parts else "Outbound job stuck awaiting verification."
    return "warn", "OTP verification stuck", body, LinkRef(
        kind="outbound_job", id=_text(payload.get("outbound_job_id"))
    )


def _call_analysis_ready(payload: dict) -> tuple[str, str, str, LinkRef]:
    quality = payload.get("quality_score")
    escalation = payload.get("escalation_required") is True
    non_compliant = payload.get("compliance_verified") is False

    if escalation or non_compliant:
        severity = "error"
    elif quality is not None and quality <= 6:
        severity = "warn"
    else:
        severity = "info"

    flags = []
    if escalation:
        flags.append("Escalation required")
    if non_compliant:
        flags.append("Compliance not verified")
    if payload.get("supervisor_review_needed") is True:
        flags.append("Supervisor review")
    if payload.get("customer_frustrated") is True:
        flags.append("Customer frustrated")
    if payload.get("issue_resolved") is False:
        flags.append("Issue unresolved")
    if quality is not None:
        flags.append(f"Quality {quality}/10")

    body = SEPARATOR.join(flags) if flags else "Call analysis completed."
    return severity, "Call analysis ready", body, LinkRef(
        kind="conversation", id=_text(payload.get("conversation_id"))
    )


TEMPLATES = {
    AutomationEventTypes.FRAUD_CASE_CREATED: _fraud_case_created,
    AutomationEventTypes.OUTBOUND_FAILED_MAX_ATTEMPTS: _outbound_failed,
    AutomationEventTypes.DAILY_OPERATIONAL_SUMMARY_READY: _daily_summary,
    AutomationEventTypes.OTP_VERIFICATION_STUCK: _otp_stuck,
    AutomationEventTypes.CALL_ANALYSIS_READY: _call_analysis_ready,
}


def build_inbox_item(event: AutomationEvent) -> InboxItemDraft | None:
    """
    Map an event to the inbox item it should produce.

    The item's dedupe_key is the event's own dedupe_key, so dispatching the
    same event twice collides on insert instead of creating a second item.
    Returns None for event types without a template.
    """
    template = TEMPLATES.get(event.event_type)
    if template is None:
        return None

    severity, title, body, link_ref = template(event.payload or {})
    return InboxItemDraft(
        type=event.event_type,
        severity=severity,
        title=title,
        body=body,
        link_ref=link_ref,
        dedupe_key=event.dedupe_key,
    )
