"""
Read and action operations behind the automation admin API.
"""

from datetime import datetime

from app.core.errors import ValidationError
from app.features.automation.domain import (
    EVENT_STATUSES,
    INBOX_ACTIONABLE_STATUSES,
    INBOX_ACTIONS,
    INBOX_STATUSES,
    SEVERITIES,
    AdminInboxItem,
    AutomationEvent,
    AutomationEventTypes,
)
from app.features.automation.repository import AdminInboxRepository, AutomationEventRepository
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_LIST_LIMIT = 200


def _clamp(limit: int | None, default: int = 50) -> int:
    return min(MAX_LIST_LIMIT, max(1, limit or default))


class AutomationAdminService:
    def __init__(self, events=AutomationEventRepository, inbox=AdminInboxRepository, audit=audit_logger):
        self.events = events
        self.inbox = inbox
        self.audit = audit

    async def list_events(
        self, status: str | None = None, event_type: str | None = None, limit: int | None = None
    ) -> list[AutomationEvent]:
        if status and status not in EVENT_STATUSES:
            raise ValidationError(f"Unknown event status: {status}", field="status")
        if event_type and event_type not in AutomationEventTypes.ALL:
            raise ValidationError(f"Unknown event type: {event_type}", field="type")
        return await self.events.list_events(status, event_type, _clamp(limit))

    async def list_inbox(
        self,
        status: str | None = None,
        severity: str | None = None,
        item_type: str | None = None,
        limit: int | None = None,
    ) -> list[AdminInboxItem]:
        if status and status not in INBOX_STATUSES:
            raise ValidationError(f"Unknown inbox status: {status}", field="status")
        if severity and severity not in SEVERITIES:
            raise ValidationError(f"Unknown severity: {severity}", field="severity")
        return await self.inbox.list_items(status, severity, item_type, _clamp(limit))

    async def apply_inbox_action(
        self, item_id: str, action: str, now: datetime, actor_id: str | None = None
    ) -> AdminInboxItem | None:
        """
        acknowledge / resolve / dismiss an item. None if the id is unknown.

        Resolved and dismissed items are closed: acting on them is a no-op
        that returns the item unchanged.
        """
        status = INBOX_ACTIONS.get(action)
        if status is None:
            raise ValidationError(f"Unknown action: {action}", field="action")

        current = await self.inbox.get_item(item_id)
        if current is None:
            return None
        if current.status not in INBOX_ACTIONABLE_STATUSES:
            logger.info("Inbox action ignored for closed item", inbox_item_id=item_id, status=current.status, action=action)
            return current

        item = await self.inbox.update_status(item_id, status, INBOX_ACTIONABLE_STATUSES, now)
        if item is None:
            # Closed by another caller in between
            return await self.inbox.get_item(item_id)

        await self.audit.log(
            event_type="admin_inbox_item_updated",
            actor_type="agent",
            actor_id=actor_id,
            context="automation",
            input_redacted={"inbox_item_id": item_id, "action": action},
            output_redacted={"status": status},
        )
        return item


automation_admin_service = AutomationAdminService()
