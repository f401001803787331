"""
Outbound delivery feature package.

Vertical slice for outbound jobs: domain models, repositories, the runner
and verification gate, and the admin API router. Import the router from
.api directly; only domain types are re-exported here.
"""

from .domain.models import OutboundAttempt, OutboundCampaign, OutboundJob  # noqa: F401
