"""
Shared fixtures.

The fakes below mirror the repository classes method for method and apply
the same conditional-update rules as the SQL (expected status, expected
attempt count, unique dedupe keys), so runner/gate/dispatcher behaviour can
be exercised end to end without Postgres.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from app.core.errors import DuplicateError, PersistenceError, ProviderError
from app.features.automation.domain import EVENT_PENDING, AdminInboxItem, AutomationEvent
from app.features.automation.services.outbox import AutomationOutbox
from app.features.outbound.domain import (
    STATUS_AWAITING_VERIFICATION,
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_QUEUED,
    OutboundCampaign,
    OutboundJob,
)
from app.features.outbound.services.providers import ProviderReceipt

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FixedRandom:
    """random.Random stand-in: 0.5 means zero jitter."""

    def __init__(self, value: float = 0.5):
        self.value = value

    def random(self) -> float:
        return self.value


def _copy_job(job: OutboundJob) -> OutboundJob:
    return replace(job, payload=dict(job.payload))


class FakeJobRepository:
    def __init__(self):
        self.campaigns: dict[str, OutboundCampaign] = {}
        self.jobs: dict[str, OutboundJob] = {}
        self.attempts: list = []
        self.fail_due_query = False
        self.fail_stuck_query = False
        self.fail_complete_attempts = 0
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    # Test setup helpers
    def add_campaign(self, purpose: str = "service_notice", allowed_channels=None) -> OutboundCampaign:
        campaign = OutboundCampaign(
            id=self._next_id("campaign"),
            name=f"{purpose} campaign",
            purpose=purpose,
            allowed_channels=allowed_channels,
            status="active",
            created_at=NOW,
            updated_at=NOW,
        )
        self.campaigns[campaign.id] = campaign
        return campaign

    def add_job(
        self,
        channel: str = "sms",
        target_address: str = "+34600111218",
        purpose: str = "service_notice",
        payload: dict | None = None,
        max_attempts: int = 3,
        status: str = STATUS_QUEUED,
        bank_customer_id: str | None = "cust-1",
        next_attempt_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> OutboundJob:
        campaign = self.add_campaign(purpose)
        job = OutboundJob(
            id=self._next_id("job"),
            campaign_id=campaign.id,
            channel=channel,
            target_address=target_address,
            status=status,
            attempt_count=0,
            max_attempts=max_attempts,
            bank_customer_id=bank_customer_id,
            payload=dict(payload or {"text": "Your card was shipped."}),
            scheduled_at=NOW,
            next_attempt_at=next_attempt_at or NOW,
            created_at=NOW,
            updated_at=updated_at or NOW,
            campaign_purpose=purpose,
        )
        self.jobs[job.id] = job
        return _copy_job(job)

    def stored(self, job_id: str) -> OutboundJob:
        return self.jobs[job_id]

    # Campaigns
    async def create_campaign(self, name, purpose, allowed_channels, now):
        campaign = OutboundCampaign(
            id=self._next_id("campaign"),
            name=name,
            purpose=purpose,
            allowed_channels=allowed_channels,
            status="active",
            created_at=now,
            updated_at=now,
        )
        self.campaigns[campaign.id] = campaign
        return campaign

    async def get_campaign(self, campaign_id):
        return self.campaigns.get(campaign_id)

    async def list_campaigns(self, limit=200):
        ordered = sorted(self.campaigns.values(), key=lambda c: c.updated_at, reverse=True)
        return ordered[:limit]

    # Jobs
    async def create_job(
        self, *, campaign_id, bank_customer_id, channel, target_address, payload, scheduled_at, max_attempts, now
    ):
        job = OutboundJob(
            id=self._next_id("job"),
            campaign_id=campaign_id,
            channel=channel,
            target_address=target_address,
            status=STATUS_QUEUED,
            attempt_count=0,
            max_attempts=max_attempts,
            bank_customer_id=bank_customer_id,
            payload=dict(payload),
            scheduled_at=scheduled_at,
            next_attempt_at=scheduled_at,
            created_at=now,
            updated_at=now,
            campaign_purpose=self.campaigns[campaign_id].purpose,
        )
        self.jobs[job.id] = job
        return _copy_job(job)

    async def get_job(self, job_id):
        job = self.jobs.get(job_id)
        return _copy_job(job) if job else None

    async def list_jobs(self, status, limit, cursor=None):
        rows = [j for j in self.jobs.values() if not status or j.status == status]
        rows.sort(key=lambda j: (j.created_at.isoformat(), j.id), reverse=True)
        if cursor:
            rows = [j for j in rows if (j.created_at.isoformat(), j.id) < tuple(cursor)]
        return [_copy_job(j) for j in rows[:limit]]

    async def list_attempts(self, job_id):
        return sorted((a for a in self.attempts if a.outbound_job_id == job_id), key=lambda a: a.attempt_number)

    async def last_attempt_times(self, job_ids):
        times = {}
        for attempt in self.attempts:
            if attempt.outbound_job_id in job_ids:
                times[attempt.outbound_job_id] = attempt.created_at
        return times

    async def audit_tail(self, job_id, limit=50):
        return []

    async def fetch_due_jobs(self, now, limit):
        if self.fail_due_query:
            raise RuntimeError("database unavailable")
        due = [j for j in self.jobs.values() if j.status == STATUS_QUEUED and j.next_attempt_at and j.next_attempt_at <= now]
        due.sort(key=lambda j: (j.next_attempt_at, j.created_at))
        return [_copy_job(j) for j in due[:limit]]

    async def claim_job(self, job_id, expected_attempt_count, lease_until, now):
        job = self.jobs.get(job_id)
        if not job or job.status != STATUS_QUEUED or job.attempt_count != expected_attempt_count:
            return None
        if job.attempt_count >= job.max_attempts:
            return None
        job.attempt_count += 1
        job.next_attempt_at = lease_until
        job.updated_at = now
        return job.attempt_count

    async def fail_exhausted(self, job_id, error_code, error_message, now):
        job = self.jobs.get(job_id)
        if not job or job.status != STATUS_QUEUED or job.attempt_count < job.max_attempts:
            return False
        job.status = STATUS_FAILED
        job.next_attempt_at = None
        job.outcome_code = "failed_delivery"
        job.last_error_code = error_code
        job.last_error_message = error_message
        job.updated_at = now
        return True

    async def complete_attempt(self, attempt, transition, now):
        if self.fail_complete_attempts:
            self.fail_complete_attempts -= 1
            raise PersistenceError("connection lost", operation="complete_attempt")
        if any(
            a.outbound_job_id == attempt.outbound_job_id and a.attempt_number == attempt.attempt_number
            for a in self.attempts
        ):
            raise DuplicateError("duplicate attempt", operation="complete_attempt")
        self.attempts.append(replace(attempt, created_at=now))

        job = self.jobs[attempt.outbound_job_id]
        if job.status != STATUS_QUEUED or job.attempt_count != attempt.attempt_number:
            return False
        job.status = transition.status
        job.next_attempt_at = transition.next_attempt_at
        job.outcome_code = transition.outcome_code or job.outcome_code
        job.last_error_code = transition.last_error_code or job.last_error_code
        job.last_error_message = transition.last_error_message or job.last_error_message
        job.payload = {**job.payload, **(transition.payload_patch or {})}
        job.updated_at = now
        return True

    async def set_customer(self, job_id, bank_customer_id, now):
        job = self.jobs[job_id]
        if job.bank_customer_id is None:
            job.bank_customer_id = bank_customer_id

    async def cancel_job(self, job_id, expected_statuses, reason_code, reason_message, outcome_code, now):
        job = self.jobs.get(job_id)
        if not job or job.status not in expected_statuses:
            return False
        job.status = STATUS_CANCELLED
        job.cancel_reason_code = reason_code
        job.cancel_reason_message = reason_message
        job.outcome_code = outcome_code
        job.next_attempt_at = None
        job.updated_at = now
        return True

    async def find_awaiting_verification(self, bank_customer_id, channel, target_address, limit):
        rows = [
            j
            for j in self.jobs.values()
            if j.status == STATUS_AWAITING_VERIFICATION
            and j.bank_customer_id == bank_customer_id
            and j.channel == channel
            and j.target_address == target_address
        ]
        return [_copy_job(j) for j in rows[:limit]]

    async def resume_verified(self, job_id, now):
        job = self.jobs.get(job_id)
        if not job or job.status != STATUS_AWAITING_VERIFICATION:
            return False
        job.status = STATUS_QUEUED
        job.next_attempt_at = now
        job.max_attempts = max(job.max_attempts, job.attempt_count + 1)
        job.payload = {**job.payload, "verification_state": "verified"}
        job.updated_at = now
        return True

    async def fetch_stuck_awaiting(self, updated_before):
        if self.fail_stuck_query:
            raise RuntimeError("database unavailable")
        rows = [j for j in self.jobs.values() if j.status == STATUS_AWAITING_VERIFICATION and j.updated_at < updated_before]
        return [_copy_job(j) for j in sorted(rows, key=lambda j: j.updated_at)]

    async def count_by_status_since(self, since):
        counts: dict[str, int] = {}
        for job in self.jobs.values():
            if job.created_at >= since:
                counts[job.status] = counts.get(job.status, 0) + 1
        return counts


class FakeEventRepository:
    def __init__(self):
        self.events: dict[str, AutomationEvent] = {}
        self.fail_inserts = False
        self._seq = 0

    def by_key(self, dedupe_key: str) -> AutomationEvent | None:
        return next((e for e in self.events.values() if e.dedupe_key == dedupe_key), None)

    async def insert_event(self, event_type, payload, dedupe_key, next_attempt_at, now):
        if self.fail_inserts:
            raise RuntimeError("database unavailable")
        if self.by_key(dedupe_key):
            raise DuplicateError("duplicate dedupe_key", operation="insert_event")
        self._seq += 1
        event = AutomationEvent(
            id=f"event-{self._seq}",
            event_type=event_type,
            payload=payload,
            status=EVENT_PENDING,
            attempts=0,
            dedupe_key=dedupe_key,
            next_attempt_at=next_attempt_at,
            created_at=now + timedelta(microseconds=self._seq),
            updated_at=now,
        )
        self.events[event.id] = event
        return replace(event)

    async def get_event(self, event_id):
        event = self.events.get(event_id)
        return replace(event) if event else None

    async def list_events(self, status=None, event_type=None, limit=50):
        rows = [
            e
            for e in self.events.values()
            if (not status or e.status == status) and (not event_type or e.event_type == event_type)
        ]
        return [replace(e) for e in sorted(rows, key=lambda e: e.created_at, reverse=True)[:limit]]

    async def fetch_dispatchable(self, now, limit):
        rows = [
            e
            for e in self.events.values()
            if e.status == EVENT_PENDING and e.next_attempt_at is not None and e.next_attempt_at <= now
        ]
        return [replace(e) for e in sorted(rows, key=lambda e: e.created_at)[:limit]]

    async def mark_sent(self, event_id, now):
        event = self.events.get(event_id)
        if not event or event.status != EVENT_PENDING:
            return False
        event.status = "sent"
        event.next_attempt_at = None
        event.last_error = None
        event.updated_at = now
        return True

    async def record_failure(self, event_id, expected_attempts, status, next_attempt_at, last_error, now):
        event = self.events.get(event_id)
        if not event or event.status != EVENT_PENDING or event.attempts != expected_attempts:
            return False
        event.status = status
        event.attempts += 1
        event.next_attempt_at = next_attempt_at
        event.last_error = last_error
        event.updated_at = now
        return True

    async def reset_for_retry(self, event_id, now):
        event = self.events.get(event_id)
        if not event:
            return None
        event.status = EVENT_PENDING
        event.next_attempt_at = now
        event.last_error = None
        event.updated_at = now
        return replace(event)


class FakeInboxRepository:
    def __init__(self):
        self.items: dict[str, AdminInboxItem] = {}
        self.failures_remaining = 0
        self._seq = 0

    async def insert_item(self, *, type, severity, title, body, link_ref, dedupe_key, now):
        if self.failures_remaining:
            self.failures_remaining -= 1
            raise RuntimeError("inbox insert failed")
        if any(i.dedupe_key == dedupe_key for i in self.items.values()):
            raise DuplicateError("duplicate dedupe_key", operation="insert_item")
        self._seq += 1
        item = AdminInboxItem(
            id=f"item-{self._seq}",
            type=type,
            severity=severity,
            title=title,
            status="open",
            dedupe_key=dedupe_key,
            body=body,
            link_ref=link_ref,
            created_at=now,
            updated_at=now,
        )
        self.items[item.id] = item
        return replace(item)

    async def list_items(self, status=None, severity=None, type=None, limit=50):
        rows = [
            i
            for i in self.items.values()
            if (not status or i.status == status)
            and (not severity or i.severity == severity)
            and (not type or i.type == type)
        ]
        return [replace(i) for i in rows[:limit]]

    async def get_item(self, item_id):
        item = self.items.get(item_id)
        return replace(item) if item else None

    async def update_status(self, item_id, status, expected_statuses, now):
        item = self.items.get(item_id)
        if not item or item.status not in expected_statuses:
            return None
        item.status = status
        item.updated_at = now
        return replace(item)


class FakeSummaryRepository:
    def __init__(self, fraud=2, queued=5, failed=1, inbox_open=3, fail=False):
        self.values = {"fraud": fraud, "queued": queued, "failed": failed, "inbox_open": inbox_open}
        self.fail = fail
        self.windows = []

    async def count_fraud_cases(self, start, end):
        if self.fail:
            raise RuntimeError("database unavailable")
        self.windows.append((start, end))
        return self.values["fraud"]

    async def count_outbound_jobs(self, status, start, end):
        return self.values[status]

    async def count_open_inbox_items(self):
        return self.values["inbox_open"]


class FakeComplianceRepository:
    def __init__(self):
        self.links: dict[tuple[str, str], dict] = {}
        self.preferences: dict[str, dict] = {}

    async def get_identity_link(self, channel, address):
        return self.links.get((channel, address))

    async def get_comm_preferences(self, bank_customer_id):
        return self.preferences.get(bank_customer_id)


class FakeAudit:
    def __init__(self):
        self.entries: list[dict] = []

    async def log(self, event_type, **kwargs):
        self.entries.append({"event_type": event_type, **kwargs})
        return True

    async def log_failure(self, event_type, error_code, error=None, **kwargs):
        self.entries.append({"event_type": event_type, "error_code": error_code, "success": False, **kwargs})
        return True

    def types(self) -> list[str]:
        return [e["event_type"] for e in self.entries]


class FakeProviders:
    """Records sends; raises `error` when set. on_send runs mid-send."""

    def __init__(self):
        self.sent: list[dict] = []
        self.error: Exception | None = None
        self.on_send = None

    async def send(self, job, text, subject=None, html=None):
        self.sent.append({"job_id": job.id, "channel": job.channel, "text": text, "subject": subject})
        if self.on_send:
            await self.on_send(job)
        if self.error:
            raise self.error
        return ProviderReceipt(provider="mock", status="sent", message_id=f"msg-{len(self.sent)}")


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def job_repo():
    return FakeJobRepository()


@pytest.fixture
def event_repo():
    return FakeEventRepository()


@pytest.fixture
def inbox_repo():
    return FakeInboxRepository()


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def providers():
    return FakeProviders()


@pytest.fixture
def outbox(event_repo):
    return AutomationOutbox(repository=event_repo)


@pytest.fixture
def fixed_rng():
    return FixedRandom()


@pytest.fixture
def compliance_repo():
    return FakeComplianceRepository()


@pytest.fixture
def summary_repo():
    return FakeSummaryRepository()
