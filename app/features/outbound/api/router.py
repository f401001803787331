"""
Outbound admin routes.

Create, inspect, cancel and run outbound jobs. Every route is guarded by
the outbound capability check; run and cancel also accept supervisors.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.auth.verify import require_outbound_admin, require_outbound_operator
from app.features.outbound.api.schemas import (
    CancelOutboundJobRequest,
    CreateOutboundJobRequest,
    RunOutboundJobsRequest,
)
from app.features.outbound.domain import OutboundJob
from app.features.outbound.services import outbound_job_service, outbound_runner
from app.infrastructure.observability.logging import get_logger
from app.security.addresses import address_hint
from app.utils.audit_helpers import audit_admin_read

logger = get_logger(__name__)

router = APIRouter(prefix="/outbound", tags=["outbound"])


def _job_summary(job: OutboundJob) -> dict:
    return {
        "id": job.id,
        "status": job.status,
        "channel": job.channel,
        "to_hint": address_hint(job.target_address),
        "campaign_id": job.campaign_id,
        "attempt_count": job.attempt_count,
        "max_attempts": job.max_attempts,
        "next_attempt_at": job.next_attempt_at,
        "outcome_code": job.outcome_code,
        "cancel_reason_code": job.cancel_reason_code,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
async def create_outbound_job(
    body: CreateOutboundJobRequest,
    actor_id: str = Depends(require_outbound_admin),
):
    """Queue a job, creating its campaign when none is referenced."""
    job = await outbound_job_service.create_job(
        channel=body.channel,
        target_address=body.target_address,
        campaign_id=body.campaign_id,
        campaign=body.campaign.model_dump() if body.campaign else None,
        bank_customer_id=body.bank_customer_id,
        payload=body.payload_json,
        scheduled_at=body.scheduled_at,
        max_attempts=body.max_attempts,
        actor_id=actor_id,
        now=datetime.now(UTC),
    )
    return {"job": _job_summary(job)}


@router.get("/jobs")
async def list_outbound_jobs(
    request: Request,
    actor_id: str = Depends(require_outbound_admin),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    cursor: str | None = Query(default=None, description="created_at|id of the last row seen"),
):
    page = await outbound_job_service.list_jobs(status_filter, limit, cursor)
    await audit_admin_read(
        request,
        actor_id,
        "outbound_jobs_listed",
        resource_count=len(page["items"]),
        filters={"status": status_filter, "limit": limit},
    )
    return page


@router.get("/jobs/{job_id}")
async def get_outbound_job(job_id: str, request: Request, actor_id: str = Depends(require_outbound_admin)):
    """Job detail with attempts and recent audit entries."""
    detail = await outbound_job_service.get_job_detail(job_id)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Outbound job not found")
    await audit_admin_read(request, actor_id, "outbound_job_viewed", resource_id=job_id)
    return detail


@router.post("/jobs/{job_id}/cancel")
async def cancel_outbound_job(
    job_id: str,
    body: CancelOutboundJobRequest | None = None,
    actor_id: str = Depends(require_outbound_operator),
):
    body = body or CancelOutboundJobRequest()
    job = await outbound_job_service.cancel_job(
        job_id,
        now=datetime.now(UTC),
        reason_code=body.reason_code,
        reason_message=body.reason_message,
        outcome_code=body.outcome_code,
        actor_id=actor_id,
    )
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Outbound job not found")
    return {"job": _job_summary(job)}


@router.post("/jobs/run")
async def run_outbound_jobs(
    body: RunOutboundJobsRequest | None = None,
    actor_id: str = Depends(require_outbound_operator),
):
    """Process due jobs now. Partial failures are reported per job, not as an error."""
    limit = body.limit if body else None
    logger.info("Manual outbound run requested", actor_id=actor_id, limit=limit)
    return await outbound_runner.run_due_jobs(datetime.now(UTC), limit)


@router.get("/campaigns")
async def list_outbound_campaigns(actor_id: str = Depends(require_outbound_admin)):
    campaigns = await outbound_job_service.list_campaigns()
    return {
        "campaigns": [
            {
                "id": c.id,
                "name": c.name,
                "purpose": c.purpose,
                "allowed_channels": c.allowed_channels,
                "created_at": c.created_at,
                "updated_at": c.updated_at,
            }
            for c in campaigns
        ]
    }


@router.get("/health")
async def outbound_health(actor_id: str = Depends(require_outbound_admin)):
    """Job counts per status over the last 24 hours."""
    return await outbound_job_service.health(datetime.now(UTC))
