"""
Repository subpackage for the automation feature.
"""

from .event_repository import AutomationEventRepository
from .inbox_repository import AdminInboxRepository
from .summary_repository import OperationalSummaryRepository

__all__ = ["AdminInboxRepository", "AutomationEventRepository", "OperationalSummaryRepository"]
