"""
Verification gate: resume outbound jobs after OTP confirmation.

Trigger point: the inbound-message handler, right after a customer
completes OTP verification on a channel. Matching jobs are requeued with
verification_state=verified and processed immediately instead of waiting
for the next scheduled run.
"""

from dataclasses import replace
from datetime import datetime

from app.config import settings
from app.features.outbound.domain import STATUS_QUEUED
from app.features.outbound.repository import OutboundJobRepository
from app.features.outbound.services.runner import OutboundJobRunner, outbound_runner
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger
from app.security.addresses import normalize_address

logger = get_logger(__name__)


class VerificationGate:
    """Requeues and immediately runs jobs parked in awaiting_verification."""

    def __init__(
        self,
        runner: OutboundJobRunner = outbound_runner,
        repository=OutboundJobRepository,
        audit=audit_logger,
        resume_limit: int | None = None,
    ):
        self.runner = runner
        self.repository = repository
        self.audit = audit
        self.resume_limit = resume_limit or settings.VERIFICATION_RESUME_LIMIT

    async def resume_after_verification(
        self,
        bank_customer_id: str,
        channel: str,
        from_address: str,
        now: datetime,
        conversation_id: str | None = None,
        message_id: str | None = None,
    ) -> dict:
        """
        Resume jobs waiting on this (customer, channel, address).

        A job cancelled before the confirmation arrives is not matched, and
        the requeue itself is conditional, so a cancel that lands between
        lookup and requeue also wins.

        Returns:
            {"resumed": n, "results": [...]}
        """
        address = normalize_address(channel, from_address)

        try:
            jobs = await self.repository.find_awaiting_verification(
                bank_customer_id, channel, address, self.resume_limit
            )
        except Exception as e:
            logger.error("Verification resume lookup failed", channel=channel, error=str(e))
            await self.audit.log_failure(
                event_type="outbound_resume_poll_failed",
                error_code="OUTBOUND_RESUME_POLL_FAILED",
                error=e,
                bank_customer_id=bank_customer_id,
                input_redacted={"channel": channel, "address": address},
            )
            return {"resumed": 0, "results": []}

        resumed = 0
        results = []
        for job in jobs:
            if not await self.repository.resume_verified(job.id, now):
                logger.info("Job left awaiting_verification before resume", job_id=job.id)
                continue

            await self.audit.log(
                event_type="outbound_job_resumed_after_otp",
                context="verification",
                bank_customer_id=bank_customer_id,
                conversation_id=conversation_id,
                input_redacted={
                    "outbound_job_id": job.id,
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                },
                output_redacted={"status": STATUS_QUEUED},
            )

            # Process the patched copy so the runner sees verification_state=verified
            patched = replace(
                job,
                status=STATUS_QUEUED,
                next_attempt_at=now,
                max_attempts=max(job.max_attempts, job.attempt_count + 1),
                payload={**job.payload, "verification_state": "verified"},
            )
            try:
                result = await self.runner.process_job(patched, now)
            except Exception as e:
                logger.error("Resumed job processing failed", job_id=job.id, error=str(e), error_type=type(e).__name__)
                results.append({"job_id": job.id, "status": "error"})
            else:
                results.append({"job_id": result.job_id, "status": result.status})
            resumed += 1

        logger.info("Verification resume completed", channel=channel, matched=len(jobs), resumed=resumed)
        return {"resumed": resumed, "results": results}


verification_gate = VerificationGate()
