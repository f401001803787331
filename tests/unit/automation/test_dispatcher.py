from datetime import timedelta

import pytest

from app.features.automation.domain import AutomationEventTypes
from app.features.automation.services.dispatcher import AutomationDispatcher


@pytest.fixture
def dispatcher(event_repo, inbox_repo, fixed_rng):
    return AutomationDispatcher(events=event_repo, inbox=inbox_repo, max_attempts=3, rng=fixed_rng)


async def _emit_failed_job(outbox, now, job_id="job-1"):
    await outbox.emit(
        AutomationEventTypes.OUTBOUND_FAILED_MAX_ATTEMPTS,
        f"outbound_failed:{job_id}",
        {
            "outbound_job_id": job_id,
            "channel": "voice",
            "target_hint": "+34•••18",
            "attempt_count": 2,
            "max_attempts": 2,
            "last_error_code": "TWILIO_NO_ANSWER",
        },
        now,
    )


@pytest.mark.asyncio
async def test_event_becomes_one_inbox_item(dispatcher, outbox, event_repo, inbox_repo, now):
    await _emit_failed_job(outbox, now)

    summary = await dispatcher.dispatch(now)

    assert summary["picked"] == 1
    assert summary["sent"] == 1
    item = next(iter(inbox_repo.items.values()))
    assert item.type == "outbound_failed_max_attempts"
    assert item.severity == "error"
    assert item.title == "Outbound intervention needed"
    assert item.dedupe_key == "outbound_failed:job-1"
    assert item.link_ref == {"kind": "outbound_job", "id": "job-1"}
    assert event_repo.by_key("outbound_failed:job-1").status == "sent"


@pytest.mark.asyncio
async def test_redispatch_after_crash_does_not_duplicate(dispatcher, outbox, event_repo, inbox_repo, now):
    await _emit_failed_job(outbox, now)
    await dispatcher.dispatch(now)

    # Simulate a crash between "insert item" and "mark sent"
    event_repo.by_key("outbound_failed:job-1").status = "pending"
    event_repo.by_key("outbound_failed:job-1").next_attempt_at = now

    summary = await dispatcher.dispatch(now)

    assert summary["sent"] == 1
    assert len(inbox_repo.items) == 1
    assert event_repo.by_key("outbound_failed:job-1").status == "sent"


@pytest.mark.asyncio
async def test_failure_reschedules_with_backoff(dispatcher, outbox, event_repo, inbox_repo, now):
    await _emit_failed_job(outbox, now)
    inbox_repo.failures_remaining = 1

    summary = await dispatcher.dispatch(now)

    event = event_repo.by_key("outbound_failed:job-1")
    assert summary["failed"] == 1
    assert event.status == "pending"
    assert event.attempts == 1
    assert event.next_attempt_at == now + timedelta(seconds=10)
    assert "inbox insert failed" in event.last_error

    assert (await dispatcher.dispatch(now))["picked"] == 0
    assert (await dispatcher.dispatch(now + timedelta(seconds=10)))["sent"] == 1
    assert len(inbox_repo.items) == 1


@pytest.mark.asyncio
async def test_event_is_marked_failed_at_attempt_ceiling(dispatcher, outbox, event_repo, inbox_repo, now):
    await _emit_failed_job(outbox, now)
    inbox_repo.failures_remaining = 10

    moment = now
    for _ in range(3):
        await dispatcher.dispatch(moment)
        moment += timedelta(hours=1)

    event = event_repo.by_key("outbound_failed:job-1")
    assert event.status == "failed"
    assert event.attempts == 3
    assert event.next_attempt_at is None
    assert (await dispatcher.dispatch(moment))["picked"] == 0


@pytest.mark.asyncio
async def test_retry_resets_failed_event(dispatcher, outbox, event_repo, inbox_repo, now):
    await _emit_failed_job(outbox, now)
    event = event_repo.by_key("outbound_failed:job-1")
    event.status = "failed"
    event.last_error = "boom"
    event.next_attempt_at = None
    later = now + timedelta(minutes=5)

    retried = await dispatcher.retry_event(event.id, later)

    assert retried.status == "pending"
    assert retried.last_error is None
    assert retried.next_attempt_at == later
    assert (await dispatcher.dispatch(later))["sent"] == 1
    assert await dispatcher.retry_event("missing", later) is None


@pytest.mark.asyncio
async def test_event_without_template_is_settled_as_skipped(dispatcher, event_repo, inbox_repo, now):
    await event_repo.insert_event("legacy_event", {}, "legacy:1", now, now)

    summary = await dispatcher.dispatch(now)

    assert summary["skipped"] == 1
    assert inbox_repo.items == {}
    assert event_repo.by_key("legacy:1").status == "sent"


@pytest.mark.asyncio
async def test_events_are_dispatched_oldest_first(dispatcher, outbox, inbox_repo, now):
    for job_id in ("job-a", "job-b", "job-c"):
        await _emit_failed_job(outbox, now, job_id)

    summary = await dispatcher.dispatch(now, limit=2)

    assert [r["outcome"] for r in summary["results"]] == ["sent", "sent"]
    assert sorted(i.dedupe_key for i in inbox_repo.items.values()) == [
        "outbound_failed:job-a",
        "outbound_failed:job-b",
    ]
