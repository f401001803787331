"""
Service layer for the outbound feature.
"""

from .job_service import OutboundJobService, outbound_job_service
from .runner import OutboundJobRunner, build_outbound_runner, outbound_runner
from .verification_gate import VerificationGate, verification_gate

__all__ = [
    "OutboundJobRunner",
    "OutboundJobService",
    "VerificationGate",
    "build_outbound_runner",
    "outbound_job_service",
    "outbound_runner",
    "verification_gate",
]
