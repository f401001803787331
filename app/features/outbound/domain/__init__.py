"""
Domain subpackage for the outbound feature.
"""

from .models import (
    CAMPAIGN_PURPOSES,
    JOB_STATUSES,
    OUTCOME_CODES,
    OUTCOME_FAILED_DELIVERY,
    OUTCOME_OPT_OUT,
    OUTCOME_SUCCESS_UNVERIFIED,
    OUTCOME_SUCCESS_VERIFIED,
    STATUS_AWAITING_VERIFICATION,
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_QUEUED,
    STATUS_SENT,
    STEP_UP_PURPOSES,
    TERMINAL_STATUSES,
    VERIFICATION_PENDING,
    VERIFICATION_VERIFIED,
    JobResult,
    JobTransition,
    OutboundAttempt,
    OutboundCampaign,
    OutboundJob,
    OutboundPayload,
    default_max_attempts,
    normalize_status_filter,
)

__all__ = [
    "CAMPAIGN_PURPOSES",
    "JOB_STATUSES",
    "OUTCOME_CODES",
    "OUTCOME_FAILED_DELIVERY",
    "OUTCOME_OPT_OUT",
    "OUTCOME_SUCCESS_UNVERIFIED",
    "OUTCOME_SUCCESS_VERIFIED",
    "STATUS_AWAITING_VERIFICATION",
    "STATUS_CANCELLED",
    "STATUS_FAILED",
    "STATUS_QUEUED",
    "STATUS_SENT",
    "STEP_UP_PURPOSES",
    "TERMINAL_STATUSES",
    "VERIFICATION_PENDING",
    "VERIFICATION_VERIFIED",
    "JobResult",
    "JobTransition",
    "OutboundAttempt",
    "OutboundCampaign",
    "OutboundJob",
    "OutboundPayload",
    "default_max_attempts",
    "normalize_status_filter",
]
