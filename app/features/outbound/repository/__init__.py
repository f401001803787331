"""
Repository subpackage for the outbound feature.
"""

from .compliance_repository import ComplianceRepository
from .job_repository import OutboundJobRepository, OutboundRepositoryError

__all__ = ["ComplianceRepository", "OutboundJobRepository", "OutboundRepositoryError"]
