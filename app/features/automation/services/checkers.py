"""
Operational checkers.

Periodic scans that emit automation events. Each is safe to run any number
of times: emission is deduplicated per stuck job and per report date.
"""

import math
from datetime import datetime, timedelta
from typing import Any

from app.config import settings
from app.features.automation.domain import AutomationEventTypes
from app.features.automation.repository import OperationalSummaryRepository
from app.features.automation.services.outbox import AutomationOutbox, automation_outbox
from app.features.outbound.domain import STATUS_FAILED, STATUS_QUEUED
from app.features.outbound.repository import OutboundJobRepository
from app.infrastructure.observability.logging import get_logger
from app.security.addresses import address_hint

logger = get_logger(__name__)


class OperationalCheckers:
    def __init__(
        self,
        jobs=OutboundJobRepository,
        summaries=OperationalSummaryRepository,
        outbox: AutomationOutbox = automation_outbox,
    ):
        self.jobs = jobs
        self.summaries = summaries
        self.outbox = outbox

    async def check_otp_stuck(self, now: datetime, threshold_minutes: int | None = None) -> dict[str, int]:
        """
        Emit otp_verification_stuck for jobs parked in awaiting_verification
        since before now - threshold.

        Returns {"checked", "found", "events_emitted"}; events_emitted counts
        newly created events only, so a second run reports 0.
        """
        threshold_minutes = threshold_minutes or settings.OTP_STUCK_THRESHOLD_MINUTES

        try:
            stuck = await self.jobs.fetch_stuck_awaiting(now - timedelta(minutes=threshold_minutes))
        except Exception as e:
            logger.error("OTP stuck query failed", error=str(e), error_type=type(e).__name__)
            return {"checked": 0, "found": 0, "events_emitted": 0}

        emitted = 0
        for job in stuck:
            updated_at = job.updated_at or now
            stuck_minutes = math.floor((now - updated_at).total_seconds() / 60)
            result = await self.outbox.emit(
                AutomationEventTypes.OTP_VERIFICATION_STUCK,
                f"otp_stuck:{job.id}",
                {
                    "outbound_job_id": job.id,
                    "channel": job.channel,
                    "target_hint": address_hint(job.target_address),
                    "stuck_minutes": stuck_minutes,
                    "updated_at": updated_at.isoformat(),
                    "at": now.isoformat(),
                },
                now,
            )
            if result.created:
                emitted += 1
            elif not result.ok:
                logger.warning("OTP stuck event not emitted", job_id=job.id, error=result.error)

        logger.info("OTP stuck check completed", found=len(stuck), events_emitted=emitted)
        return {"checked": len(stuck), "found": len(stuck), "events_emitted": emitted}

    async def daily_summary(self, now: datetime, date: str | None = None) -> dict[str, Any]:
        """
        Count the last 24 hours of activity and emit
        daily_operational_summary_ready once per date.
        """
        date = date or now.date().isoformat()
        start = now - timedelta(hours=24)

        try:
            summary = {
                "date": date,
                "fraud_cases_created": await self.summaries.count_fraud_cases(start, now),
                "outbound_queued": await self.summaries.count_outbound_jobs(STATUS_QUEUED, start, now),
                "outbound_failed": await self.summaries.count_outbound_jobs(STATUS_FAILED, start, now),
                "inbox_open_items": await self.summaries.count_open_inbox_items(),
                "generated_at": now.isoformat(),
            }
        except Exception as e:
            logger.error("Daily summary counts failed", date=date, error=str(e), error_type=type(e).__name__)
            return {"success": False, "event_emitted": False}

        result = await self.outbox.emit(
            AutomationEventTypes.DAILY_OPERATIONAL_SUMMARY_READY,
            f"daily_summary:{date}",
            {"date": date, "summary": summary, "report_id": f"daily-{date}", "at": now.isoformat()},
            now,
        )
        logger.info("Daily summary generated", date=date, event_created=result.created)
        return {"success": True, "event_emitted": result.created, "summary": summary}


operational_checkers = OperationalCheckers()
