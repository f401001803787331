"""
Domain subpackage for the automation feature.
"""

from .models import (
    EVENT_FAILED,
    EVENT_PAYLOAD_SCHEMAS,
    EVENT_PENDING,
    EVENT_SENT,
    EVENT_STATUSES,
    INBOX_ACTIONABLE_STATUSES,
    INBOX_ACTIONS,
    INBOX_STATUSES,
    SEVERITIES,
    AdminInboxItem,
    AutomationEvent,
    AutomationEventTypes,
    EmitResult,
    InboxItemDraft,
    LinkRef,
)

__all__ = [
    "EVENT_FAILED",
    "EVENT_PAYLOAD_SCHEMAS",
    "EVENT_PENDING",
    "EVENT_SENT",
    "EVENT_STATUSES",
    "INBOX_ACTIONABLE_STATUSES",
    "INBOX_ACTIONS",
    "INBOX_STATUSES",
    "SEVERITIES",
    "AdminInboxItem",
    "AutomationEvent",
    "AutomationEventTypes",
    "EmitResult",
    "InboxItemDraft",
    "LinkRef",
]
