"""
Message rendering for outbound jobs.

Hard rule: a sensitive job never sends its content until the payload's
verification_state is "verified". Until then the channel only receives a
purpose-specific VERIFY prompt.
"""

from dataclasses import dataclass
from typing import Any

from app.features.outbound.domain import (
    OUTCOME_SUCCESS_UNVERIFIED,
    OUTCOME_SUCCESS_VERIFIED,
    STEP_UP_PURPOSES,
    VERIFICATION_VERIFIED,
    OutboundJob,
)

_VERIFY_PROMPTS = {
    "fraud_alert": "Security check: reply VERIFY to confirm it's you. Then we'll share next steps.",
    "collections": "Security check: reply VERIFY to confirm it's you. Then we'll share your account options.",
    "kyc_update": "Security check: reply VERIFY to confirm it's you. Then we'll help you complete your update.",
    "case_followup": "Security check: reply VERIFY to confirm it's you. Then we'll share details about your case.",
}
_DEFAULT_VERIFY_PROMPT = "Security check: reply VERIFY to continue."
_GENERIC_NOTICE = "We're trying to reach you regarding your account. Reply VERIFY to continue."

VERIFY_EMAIL_SUBJECT = "Verification required"
DEFAULT_EMAIL_SUBJECT = "Notification"


@dataclass(slots=True)
class RenderedMessage:
    text: str
    subject: str | None = None
    html: str | None = None
    outcome_code: str = OUTCOME_SUCCESS_UNVERIFIED


def requires_step_up(purpose: str | None, payload: dict[str, Any] | None = None) -> bool:
    """True when the job's content may only go out after OTP verification."""
    if purpose in STEP_UP_PURPOSES:
        return True
    return bool(payload) and payload.get("sensitive") is True


def needs_verification(job: OutboundJob) -> bool:
    return requires_step_up(job.campaign_purpose, job.payload) and not job.is_verified


def build_verify_prompt(purpose: str | None) -> str:
    return _VERIFY_PROMPTS.get(purpose or "", _DEFAULT_VERIFY_PROMPT)


def render_verify_prompt(job: OutboundJob) -> RenderedMessage:
    return RenderedMessage(
        text=build_verify_prompt(job.campaign_purpose),
        subject=VERIFY_EMAIL_SUBJECT if job.channel == "email" else None,
    )


def render_message(job: OutboundJob) -> RenderedMessage:
    """
    Content for a job that is verified or not sensitive.

    Prefers final_text, then text, then a generic non-sensitive notice.
    """
    if needs_verification(job):
        return render_verify_prompt(job)

    payload = job.payload or {}
    final_text = payload.get("final_text") if isinstance(payload.get("final_text"), str) else None
    text = payload.get("text") if isinstance(payload.get("text"), str) else None

    subject = None
    html = None
    if job.channel == "email":
        subject = payload.get("subject") if isinstance(payload.get("subject"), str) else DEFAULT_EMAIL_SUBJECT
        html = payload.get("html") if isinstance(payload.get("html"), str) else None

    verified = payload.get("verification_state") == VERIFICATION_VERIFIED
    return RenderedMessage(
        text=final_text or text or _GENERIC_NOTICE,
        subject=subject,
        html=html,
        outcome_code=OUTCOME_SUCCESS_VERIFIED if verified else OUTCOME_SUCCESS_UNVERIFIED,
    )
