"""
Automation admin routes: outbox events, dispatch, inbox and checkers.
"""

from dataclasses import asdict
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.auth.verify import require_automation_admin
from app.features.automation.services import (
    automation_admin_service,
    automation_dispatcher,
    operational_checkers,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/automation", tags=["automation"])


class DispatchRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=500)


class InboxActionRequest(BaseModel):
    action: str = Field(..., description="acknowledge | resolve | dismiss")


class OtpStuckCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stuck_minutes_threshold: int | None = Field(default=None, alias="stuckMinutesThreshold", ge=1)


class DailySummaryRequest(BaseModel):
    date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD")


@router.get("/events")
async def list_automation_events(
    actor_id: str = Depends(require_automation_admin),
    status_filter: str | None = Query(default=None, alias="status"),
    event_type: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=50, ge=1, le=200),
):
    events = await automation_admin_service.list_events(status_filter, event_type, limit)
    return {"events": [asdict(event) for event in events]}


@router.post("/events/{event_id}/retry")
async def retry_automation_event(event_id: str, actor_id: str = Depends(require_automation_admin)):
    """Force an event back to pending so the next dispatch picks it up."""
    event = await automation_dispatcher.retry_event(event_id, datetime.now(UTC))
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation event not found")
    logger.info("Automation event retry requested", event_id=event_id, actor_id=actor_id)
    return {"event": asdict(event)}


@router.post("/dispatch")
async def dispatch_automation_events(
    body: DispatchRequest | None = None,
    actor_id: str = Depends(require_automation_admin),
):
    return await automation_dispatcher.dispatch(datetime.now(UTC), body.limit if body else None)


@router.get("/inbox")
async def list_inbox_items(
    actor_id: str = Depends(require_automation_admin),
    status_filter: str | None = Query(default=None, alias="status"),
    severity: str | None = Query(default=None),
    item_type: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=50, ge=1, le=200),
):
    items = await automation_admin_service.list_inbox(status_filter, severity, item_type, limit)
    return {"items": [asdict(item) for item in items]}


@router.post("/inbox/{item_id}")
async def act_on_inbox_item(
    item_id: str,
    body: InboxActionRequest,
    actor_id: str = Depends(require_automation_admin),
):
    """Acknowledge, resolve or dismiss an inbox item."""
    item = await automation_admin_service.apply_inbox_action(item_id, body.action, datetime.now(UTC), actor_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inbox item not found")
    return {"item": asdict(item)}


@router.post("/checkers/otp-stuck")
async def run_otp_stuck_check(
    body: OtpStuckCheckRequest | None = None,
    actor_id: str = Depends(require_automation_admin),
):
    threshold = body.stuck_minutes_threshold if body else None
    return await operational_checkers.check_otp_stuck(datetime.now(UTC), threshold)


@router.post("/checkers/daily-summary")
async def run_daily_summary(
    body: DailySummaryRequest | None = None,
    actor_id: str = Depends(require_automation_admin),
):
    return await operational_checkers.daily_summary(datetime.now(UTC), body.date if body else None)
