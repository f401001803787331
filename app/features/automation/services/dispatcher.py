"""
Automation dispatcher.

Turns pending outbox events into admin inbox items. Each event maps to at
most one item because the item reuses the event's dedupe_key; a crash
between "insert item" and "mark sent" is healed on the next dispatch when
the insert collides and is treated as success.
"""

import random
import time
from datetime import datetime
from typing import Any

from app.config import settings
from app.core.backoff import dispatch_delay
from app.core.errors import DuplicateError
from app.features.automation.domain import EVENT_FAILED, EVENT_PENDING, AutomationEvent
from app.features.automation.repository import AdminInboxRepository, AutomationEventRepository
from app.features.automation.services.inbox_templates import build_inbox_item
from app.infrastructure.observability.logging import get_logger, log_batch_result
from app.security.redaction import redact_sensitive, redact_text

logger = get_logger(__name__)


class AutomationDispatcher:
    """Dispatches due events; collaborators are injectable for tests."""

    def __init__(
        self,
        events=AutomationEventRepository,
        inbox=AdminInboxRepository,
        max_attempts: int | None = None,
        rng: random.Random | None = None,
    ):
        self.events = events
        self.inbox = inbox
        self.max_attempts = max_attempts or settings.AUTOMATION_MAX_DISPATCH_ATTEMPTS
        self.rng = rng

    async def dispatch(self, now: datetime, limit: int | None = None) -> dict[str, Any]:
        """
        Dispatch pending events due at `now`, oldest first.

        Per-event failures are recorded on the event and counted; they never
        abort the batch.
        """
        limit = limit or settings.AUTOMATION_DISPATCH_LIMIT
        started = time.perf_counter()

        events = await self.events.fetch_dispatchable(now, limit)

        results = []
        for event in events:
            try:
                outcome = await self._dispatch_one(event, now)
            except Exception as e:
                logger.error(
                    "Automation event dispatch crashed",
                    event_id=event.id,
                    dedupe_key=event.dedupe_key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcome = "failed"
            results.append({"event_id": event.id, "event_type": event.event_type, "outcome": outcome})

        summary = {
            "picked": len(events),
            "processed": len(results),
            "sent": sum(1 for r in results if r["outcome"] == "sent"),
            "failed": sum(1 for r in results if r["outcome"] == "failed"),
            "skipped": sum(1 for r in results if r["outcome"] == "skipped"),
        }
        log_batch_result("automation_dispatch", summary, (time.perf_counter() - started) * 1000)

        return {"now": now.isoformat(), **summary, "results": results}

    async def _dispatch_one(self, event: AutomationEvent, now: datetime) -> str:
        draft = build_inbox_item(event)
        if draft is None:
            # No template: settle the event so it never blocks the queue
            await self.events.mark_sent(event.id, now)
            logger.warning("No inbox template for event type", event_id=event.id, event_type=event.event_type)
            return "skipped"

        try:
            await self.inbox.insert_item(
                type=draft.type,
                severity=draft.severity,
                title=draft.title,
                body=redact_text(draft.body, "automation"),
                link_ref=redact_sensitive(draft.link_ref.model_dump(exclude_none=True), "automation"),
                dedupe_key=draft.dedupe_key,
                now=now,
            )
        except DuplicateError:
            logger.info("Inbox item already exists for event", event_id=event.id, dedupe_key=event.dedupe_key)
        except Exception as e:
            await self._record_failure(event, e, now)
            return "failed"

        await self.events.mark_sent(event.id, now)
        logger.info("Automation event dispatched", event_id=event.id, event_type=event.event_type)
        return "sent"

    async def _record_failure(self, event: AutomationEvent, error: Exception, now: datetime) -> None:
        attempts = event.attempts + 1
        message = redact_text(str(error), "automation")[:500]

        if attempts >= self.max_attempts:
            status, next_attempt_at = EVENT_FAILED, None
        else:
            status, next_attempt_at = EVENT_PENDING, now + dispatch_delay(attempts, self.rng)

        applied = await self.events.record_failure(event.id, event.attempts, status, next_attempt_at, message, now)
        log = logger.error if status == EVENT_FAILED else logger.warning
        log(
            "Automation event dispatch failed",
            event_id=event.id,
            dedupe_key=event.dedupe_key,
            attempts=attempts,
            status=status,
            applied=applied,
            error=message,
            error_type=type(error).__name__,
        )

    async def retry_event(self, event_id: str, now: datetime) -> AutomationEvent | None:
        """Operator override: back to pending, due now, last_error cleared."""
        event = await self.events.reset_for_retry(event_id, now)
        if event:
            logger.info("Automation event reset for retry", event_id=event_id, attempts=event.attempts)
        return event


automation_dispatcher = AutomationDispatcher()
