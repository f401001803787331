"""
Post-call analysis automation.

Called after a call analysis is stored. Emits call_analysis_ready and
inserts inbox items straight away for flags a supervisor should act on,
without waiting for the dispatcher. Nothing here may break the caller.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel

from app.core.errors import DuplicateError
from app.features.automation.domain import AutomationEventTypes, LinkRef
from app.features.automation.repository import AdminInboxRepository
from app.features.automation.services.outbox import AutomationOutbox, automation_outbox
from app.infrastructure.observability.logging import get_logger
from app.security.redaction import redact_text

logger = get_logger(__name__)

SUMMARY_PREVIEW_CHARS = 100
QA_COACHING_MAX_SCORE = 6


class CallAnalysis(BaseModel):
    """Stored analysis of one call."""

    id: str
    conversation_id: str
    provider_call_id: str | None = None
    call_summary: str | None = None
    escalation_required: bool | None = None
    compliance_verified: bool | None = None
    quality_score: float | None = None
    customer_frustrated: bool | None = None
    issue_resolved: bool | None = None
    supervisor_review_needed: bool | None = None
    issue_type: str | None = None
    issue_severity: str | None = None


@dataclass(slots=True)
class _FlagItem:
    type: str
    severity: str
    title: str
    body: str
    dedupe_prefix: str


def _preview(summary: str | None, lead: str, fallback: str) -> str:
    if not summary:
        return fallback
    text = summary[:SUMMARY_PREVIEW_CHARS]
    if len(summary) > SUMMARY_PREVIEW_CHARS:
        text += "..."
    return f"{lead} {text}"


def flag_items(analysis: CallAnalysis) -> list[_FlagItem]:
    """Inbox items implied by the analysis flags, most urgent first."""
    summary = analysis.call_summary
    items = []

    if analysis.escalation_required:
        items.append(_FlagItem(
            "call_escalation_required", "error", "Call escalation required",
            _preview(summary, "Call requires escalation.", "Call requires escalation."),
            "call_escalation",
        ))
    if analysis.compliance_verified is False:
        items.append(_FlagItem(
            "call_compliance_review", "error", "Compliance review required",
            _preview(summary, "Compliance verification failed.", "Compliance verification failed. Review required."),
            "call_compliance",
        ))
    if analysis.supervisor_review_needed:
        items.append(_FlagItem(
            "call_supervisor_review", "warn", "Supervisor review needed",
            _preview(summary, "Supervisor review requested.", "Supervisor review needed for this call."),
            "call_supervisor",
        ))
    if analysis.quality_score is not None and analysis.quality_score <= QA_COACHING_MAX_SCORE:
        items.append(_FlagItem(
            "call_qa_coaching", "warn", "QA coaching candidate",
            f"Quality score: {analysis.quality_score:g}/10. Review for coaching opportunities.",
            "call_qa",
        ))
    if analysis.customer_frustrated:
        items.append(_FlagItem(
            "call_customer_frustrated", "warn", "Customer frustrated",
            _preview(summary, "Customer showed frustration.", "Customer showed frustration during call."),
            "call_frustrated",
        ))
    if analysis.issue_resolved is False:
        body = (
            f"Issue not resolved: {analysis.issue_type}. Follow-up needed."
            if analysis.issue_type
            else "Issue not resolved. Follow-up required."
        )
        items.append(_FlagItem("call_followup_required", "warn", "Follow-up required", body, "call_followup"))

    return items


class CallAnalysisAutomation:
    def __init__(self, outbox: AutomationOutbox = automation_outbox, inbox=AdminInboxRepository):
        self.outbox = outbox
        self.inbox = inbox

    async def process(self, analysis: CallAnalysis, now: datetime) -> dict[str, int | bool]:
        """
        Emit the analysis event and create flag items.

        Returns {"event_created", "items_created", "items_failed"}. Duplicate
        items count as neither created nor failed.
        """
        result = {"event_created": False, "items_created": 0, "items_failed": 0}

        emitted = await self.outbox.emit(
            AutomationEventTypes.CALL_ANALYSIS_READY,
            f"call_analysis_ready:{analysis.id}",
            {
                "analysis_id": analysis.id,
                "conversation_id": analysis.conversation_id,
                "provider_call_id": analysis.provider_call_id,
                "escalation_required": analysis.escalation_required,
                "compliance_verified": analysis.compliance_verified,
                "quality_score": analysis.quality_score,
                "customer_frustrated": analysis.customer_frustrated,
                "issue_resolved": analysis.issue_resolved,
                "supervisor_review_needed": analysis.supervisor_review_needed,
                "issue_type": analysis.issue_type,
                "issue_severity": analysis.issue_severity,
                "at": now.isoformat(),
            },
            now,
        )
        result["event_created"] = emitted.created

        link_ref = LinkRef(kind="conversation", id=analysis.conversation_id).model_dump()
        for item in flag_items(analysis):
            dedupe_key = f"{item.dedupe_prefix}:{analysis.conversation_id}:{analysis.id}"
            try:
                await self.inbox.insert_item(
                    type=item.type,
                    severity=item.severity,
                    title=item.title,
                    body=redact_text(item.body, "automation"),
                    link_ref=link_ref,
                    dedupe_key=dedupe_key,
                    now=now,
                )
            except DuplicateError:
                continue
            except Exception as e:
                logger.error(
                    "Failed to create call analysis inbox item",
                    item_type=item.type,
                    dedupe_key=dedupe_key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result["items_failed"] += 1
            else:
                result["items_created"] += 1

        logger.info("Call analysis automation processed", analysis_id=analysis.id, **result)
        return result


call_analysis_automation = CallAnalysisAutomation()
