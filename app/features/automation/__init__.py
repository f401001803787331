"""
Automation feature package.

Outbox events, the dispatcher that turns them into admin inbox items, and
the operational checkers that feed the outbox.
"""

from .domain.models import AdminInboxItem, AutomationEvent, AutomationEventTypes  # noqa: F401
