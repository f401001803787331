from datetime import UTC, datetime

import pytest

from app.features.outbound.services.eligibility import OutboundEligibility, in_quiet_hours


def test_quiet_hours_window_wrapping_midnight():
    late = datetime(2026, 3, 2, 22, 30, tzinfo=UTC)
    early = datetime(2026, 3, 2, 6, 59, tzinfo=UTC)
    noon = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

    assert in_quiet_hours(late, "UTC", "22:00", "07:00")
    assert in_quiet_hours(early, "UTC", "22:00", "07:00")
    assert not in_quiet_hours(noon, "UTC", "22:00", "07:00")


def test_quiet_hours_use_customer_timezone():
    # 20:30 UTC is 21:30 in Madrid (CET)
    now = datetime(2026, 3, 2, 20, 30, tzinfo=UTC)

    assert in_quiet_hours(now, "Europe/Madrid", "21:00", "08:00")
    assert not in_quiet_hours(now, "UTC", "21:00", "08:00")


def test_quiet_hours_ignore_incomplete_or_empty_window():
    now = datetime(2026, 3, 2, 23, 0, tzinfo=UTC)

    assert not in_quiet_hours(now, "UTC", None, "07:00")
    assert not in_quiet_hours(now, "UTC", "22:00", "22:00")
    assert in_quiet_hours(now, "Not/AZone", "22:00", "07:00")


@pytest.fixture
def eligibility(compliance_repo, audit):
    return OutboundEligibility(repository=compliance_repo, audit=audit)


@pytest.mark.asyncio
async def test_unknown_party_without_link(eligibility, job_repo, audit, now):
    job = job_repo.add_job(bank_customer_id=None)

    result = await eligibility.evaluate(job, now)

    assert not result.eligible
    assert result.reasons == ["unknown_party"]
    assert audit.types() == ["outbound_eligibility_decision"]


@pytest.mark.asyncio
async def test_missing_preferences_means_missing_consent(eligibility, job_repo, now):
    result = await eligibility.evaluate(job_repo.add_job(), now)

    assert result.reasons == ["missing_consent"]


@pytest.mark.asyncio
async def test_channel_not_allowed(eligibility, compliance_repo, job_repo, now):
    compliance_repo.preferences["cust-1"] = {"allowed_channels": '["email"]'}

    result = await eligibility.evaluate(job_repo.add_job(), now)

    assert result.reasons == ["channel_not_allowed"]


@pytest.mark.asyncio
async def test_service_notice_override_skips_quiet_hours_but_not_dnc(eligibility, compliance_repo, job_repo):
    night = datetime(2026, 3, 2, 23, 0, tzinfo=UTC)
    compliance_repo.preferences["cust-1"] = {
        "allowed_channels": ["sms"],
        "quiet_hours_start": "22:00",
        "quiet_hours_end": "07:00",
        "timezone": "UTC",
    }
    override = job_repo.add_job(payload={"text": "Outage notice", "service_notice_override": True})
    plain = job_repo.add_job()

    assert (await eligibility.evaluate(override, night)).eligible
    assert (await eligibility.evaluate(plain, night)).reasons == ["quiet_hours"]

    compliance_repo.preferences["cust-1"]["do_not_contact"] = True
    assert "DNC" in (await eligibility.evaluate(override, night)).reasons
