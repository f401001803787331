"""
Automation outbox: durable, deduplicated record of operational facts.

emit() is idempotent by dedupe_key and never raises to producers; they get
an EmitResult and carry on with their primary operation.
"""

from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import DuplicateError
from app.features.automation.domain import EVENT_PAYLOAD_SCHEMAS, AutomationEventTypes, EmitResult
from app.features.automation.repository import AutomationEventRepository
from app.infrastructure.observability.logging import get_logger
from app.security.redaction import redact_sensitive

logger = get_logger(__name__)


class AutomationOutbox:
    """Writes pending events for the dispatcher."""

    def __init__(self, repository=AutomationEventRepository):
        self.repository = repository

    async def emit(
        self,
        event_type: str,
        dedupe_key: str,
        payload: dict[str, Any],
        now: datetime,
        next_attempt_at: datetime | None = None,
    ) -> EmitResult:
        """
        Record an event once.

        Args:
            event_type: One of AutomationEventTypes.ALL
            dedupe_key: Caller-chosen key; a repeat is a silent no-op
            payload: Event document, validated against the type's schema
            now: Current time
            next_attempt_at: Earliest dispatch time (default now)

        Returns:
            EmitResult(ok=True, created=True) for a new event,
            EmitResult(ok=True, created=False) for a duplicate,
            EmitResult(ok=False, error=...) for anything else.
        """
        if event_type not in AutomationEventTypes.ALL:
            return EmitResult(ok=False, error=f"Unknown event type: {event_type}")

        try:
            document = EVENT_PAYLOAD_SCHEMAS[event_type].model_validate(payload).model_dump(mode="json")
        except PydanticValidationError as e:
            logger.warning("Invalid automation event payload", event_type=event_type, dedupe_key=dedupe_key, error=str(e))
            return EmitResult(ok=False, error=f"Invalid payload for {event_type}")

        safe_payload = redact_sensitive(document, "automation") or {}

        try:
            event = await self.repository.insert_event(
                event_type=event_type,
                payload=safe_payload,
                dedupe_key=dedupe_key,
                next_attempt_at=next_attempt_at or now,
                now=now,
            )
        except DuplicateError:
            logger.info("Automation event already recorded", event_type=event_type, dedupe_key=dedupe_key)
            return EmitResult(ok=True, created=False)
        except Exception as e:
            logger.error(
                "Failed to emit automation event",
                event_type=event_type,
                dedupe_key=dedupe_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return EmitResult(ok=False, error=str(e))

        logger.info("Automation event created", event_type=event_type, event_id=event.id, dedupe_key=dedupe_key)
        return EmitResult(ok=True, created=True)


# Singleton used by producers
automation_outbox = AutomationOutbox()
