from app.features.outbound.domain import OutboundJob
from app.features.outbound.services.messages import (
    build_verify_prompt,
    needs_verification,
    render_message,
    requires_step_up,
)


def _job(purpose="service_notice", channel="sms", payload=None):
    return OutboundJob(
        id="job-1",
        campaign_id="campaign-1",
        channel=channel,
        target_address="+34600111218",
        status="queued",
        attempt_count=0,
        max_attempts=3,
        payload=payload or {},
        campaign_purpose=purpose,
    )


def test_step_up_purposes_and_sensitive_flag():
    assert requires_step_up("fraud_alert")
    assert requires_step_up("case_followup")
    assert not requires_step_up("service_notice")
    assert requires_step_up("service_notice", {"sensitive": True})


def test_sensitive_job_never_renders_content_before_verification():
    job = _job("collections", payload={"text": "You owe 320 EUR", "final_text": "Balance 320 EUR"})

    message = render_message(job)

    assert needs_verification(job)
    assert "320" not in message.text
    assert "VERIFY" in message.text


def test_verified_job_prefers_final_text():
    job = _job(
        "collections",
        payload={"text": "short", "final_text": "Balance 320 EUR", "verification_state": "verified"},
    )

    message = render_message(job)

    assert message.text == "Balance 320 EUR"
    assert message.outcome_code == "success_verified"


def test_unverified_notice_falls_back_to_generic_text():
    message = render_message(_job(payload={}))

    assert "VERIFY" in message.text
    assert message.outcome_code == "success_unverified_info_only"


def test_email_gets_subject_and_html():
    job = _job(channel="email", payload={"text": "Hi", "html": "<p>Hi</p>"})

    message = render_message(job)

    assert message.subject == "Notification"
    assert message.html == "<p>Hi</p>"


def test_unknown_purpose_uses_default_prompt():
    assert build_verify_prompt(None) == "Security check: reply VERIFY to continue."
    assert "case" in build_verify_prompt("case_followup")
