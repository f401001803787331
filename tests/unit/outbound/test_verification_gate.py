from datetime import timedelta

import pytest

from app.core.backoff import BackoffPolicy
from app.core.errors import ProviderError
from app.features.outbound.domain import STATUS_AWAITING_VERIFICATION, STATUS_CANCELLED, STATUS_SENT
from app.features.outbound.services.runner import OutboundJobRunner
from app.features.outbound.services.verification_gate import VerificationGate


@pytest.fixture
def runner(job_repo, providers, outbox, audit, fixed_rng):
    return OutboundJobRunner(
        repository=job_repo,
        providers=providers,
        outbox=outbox,
        audit=audit,
        backoff=BackoffPolicy(rng=fixed_rng),
    )


@pytest.fixture
def gate(runner, job_repo, audit):
    return VerificationGate(runner=runner, repository=job_repo, audit=audit, resume_limit=10)


@pytest.mark.asyncio
async def test_fraud_alert_is_delivered_after_verification(runner, gate, job_repo, providers, audit, now):
    job = job_repo.add_job(purpose="fraud_alert", payload={"text": "We blocked a payment of 120 EUR."})

    await runner.process_job(job, now)
    assert job_repo.stored(job.id).status == STATUS_AWAITING_VERIFICATION

    later = now + timedelta(minutes=3)
    result = await gate.resume_after_verification("cust-1", "sms", "+34600111218", later)

    stored = job_repo.stored(job.id)
    assert result["resumed"] == 1
    assert result["results"] == [{"job_id": job.id, "status": STATUS_SENT}]
    assert stored.status == STATUS_SENT
    assert stored.outcome_code == "success_verified"
    assert stored.payload["verification_state"] == "verified"
    assert stored.attempt_count == 2
    assert providers.sent[-1]["text"] == "We blocked a payment of 120 EUR."
    assert "outbound_job_resumed_after_otp" in audit.types()


@pytest.mark.asyncio
async def test_verified_delivery_gets_an_attempt_when_the_prompt_used_the_last_one(
    runner, gate, job_repo, providers, now
):
    job = job_repo.add_job(channel="voice", purpose="fraud_alert", max_attempts=2)
    providers.error = ProviderError("busy", code="TWILIO_BUSY")
    await runner.run_due_jobs(now)
    providers.error = None
    await runner.run_due_jobs(now + timedelta(minutes=31))
    assert job_repo.stored(job.id).status == STATUS_AWAITING_VERIFICATION

    result = await gate.resume_after_verification("cust-1", "voice", "+34600111218", now + timedelta(minutes=35))

    stored = job_repo.stored(job.id)
    assert result["results"] == [{"job_id": job.id, "status": STATUS_SENT}]
    assert stored.status == STATUS_SENT
    assert stored.attempt_count == stored.max_attempts == 3
    assert len(providers.sent) == 3


@pytest.mark.asyncio
async def test_sender_address_is_normalized_before_lookup(gate, job_repo, now):
    job = job_repo.add_job(
        channel="whatsapp",
        target_address="whatsapp:+34600111218",
        purpose="kyc_update",
        status=STATUS_AWAITING_VERIFICATION,
        next_attempt_at=None,
    )
    job_repo.jobs[job.id].payload["verification_state"] = "pending"

    result = await gate.resume_after_verification("cust-1", "whatsapp", "34 600 111 218", now)

    assert result["resumed"] == 1
    assert job_repo.stored(job.id).status == STATUS_SENT


@pytest.mark.asyncio
async def test_cancelled_job_is_never_requeued(gate, job_repo, providers, now):
    job = job_repo.add_job(purpose="collections", status=STATUS_AWAITING_VERIFICATION, next_attempt_at=None)
    await job_repo.cancel_job(job.id, (STATUS_AWAITING_VERIFICATION,), "cancelled_by_staff", None, None, now)

    result = await gate.resume_after_verification("cust-1", "sms", "+34600111218", now)

    assert result == {"resumed": 0, "results": []}
    assert job_repo.stored(job.id).status == STATUS_CANCELLED
    assert providers.sent == []


@pytest.mark.asyncio
async def test_other_customer_jobs_are_untouched(gate, job_repo, now):
    job = job_repo.add_job(purpose="collections", status=STATUS_AWAITING_VERIFICATION, next_attempt_at=None)

    result = await gate.resume_after_verification("cust-2", "sms", "+34600111218", now)

    assert result["resumed"] == 0
    assert job_repo.stored(job.id).status == STATUS_AWAITING_VERIFICATION


@pytest.mark.asyncio
async def test_lookup_failure_returns_zero_and_is_audited(gate, job_repo, audit, now):
    async def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    job_repo.find_awaiting_verification = broken

    result = await gate.resume_after_verification("cust-1", "sms", "+34600111218", now)

    assert result == {"resumed": 0, "results": []}
    assert "outbound_resume_poll_failed" in audit.types()
