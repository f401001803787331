"""
Service layer for the automation feature: outbox, dispatcher, checkers.
"""

from .admin import AutomationAdminService, automation_admin_service
from .call_analysis import CallAnalysis, CallAnalysisAutomation, call_analysis_automation
from .checkers import OperationalCheckers, operational_checkers
from .dispatcher import AutomationDispatcher, automation_dispatcher
from .inbox_templates import build_inbox_item
from .outbox import AutomationOutbox, automation_outbox

__all__ = [
    "AutomationAdminService",
    "AutomationDispatcher",
    "AutomationOutbox",
    "CallAnalysis",
    "CallAnalysisAutomation",
    "OperationalCheckers",
    "automation_admin_service",
    "automation_dispatcher",
    "automation_outbox",
    "build_inbox_item",
    "call_analysis_automation",
    "operational_checkers",
]
