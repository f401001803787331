"""
Outbound job runner.

Drives a job from queued to a terminal state one attempt at a time:

    queued -> sent
           -> awaiting_verification -> (gate) -> queued -> ...
           -> queued (retry with backoff) -> ... -> failed
    any non-terminal -> cancelled (explicit or ineligible)

Two overlapping runs may select the same job. Correctness comes from the
conditional writes in the repository: the claim only succeeds while the
job is still queued at the attempt_count we read, and the finalize step
only moves the job while it is still queued at the claimed attempt.
"""

import asyncio
import time
from datetime import datetime, timedelta

from app.config import settings
from app.core.backoff import BackoffPolicy
from app.core.errors import ProviderError
from app.features.automation.domain import AutomationEventTypes
from app.features.automation.services.outbox import automation_outbox
from app.features.outbound.domain import (
    OUTCOME_FAILED_DELIVERY,
    OUTCOME_OPT_OUT,
    OUTCOME_SUCCESS_UNVERIFIED,
    STATUS_AWAITING_VERIFICATION,
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_QUEUED,
    STATUS_SENT,
    VERIFICATION_PENDING,
    JobResult,
    JobTransition,
    OutboundAttempt,
    OutboundJob,
)
from app.features.outbound.repository import OutboundJobRepository
from app.features.outbound.services.eligibility import REASON_DNC, OutboundEligibility
from app.features.outbound.services.messages import needs_verification, render_message, render_verify_prompt
from app.features.outbound.services.providers import (
    ProviderReceipt,
    outbound_providers,
    provider_for_channel,
)
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger, log_batch_result
from app.security.addresses import address_hint

logger = get_logger(__name__)

RUNNER_ACTOR = "outbound_runner"


class OutboundJobRunner:
    """Processes due outbound jobs. Collaborators are injectable for tests."""

    def __init__(
        self,
        repository=OutboundJobRepository,
        providers=outbound_providers,
        outbox=automation_outbox,
        audit=audit_logger,
        eligibility: OutboundEligibility | None = None,
        backoff: BackoffPolicy | None = None,
        claim_lease_seconds: int = 600,
        concurrency: int = 1,
    ):
        self.repository = repository
        self.providers = providers
        self.outbox = outbox
        self.audit = audit
        self.eligibility = eligibility
        self.backoff = backoff or BackoffPolicy()
        self.claim_lease = timedelta(seconds=claim_lease_seconds)
        self.concurrency = max(1, concurrency)

    # ------------------------------------------------------------------
    # Batch entry point
    # ------------------------------------------------------------------

    async def run_due_jobs(self, now: datetime, limit: int | None = None) -> dict:
        """
        Process every queued job due at `now`, oldest first, up to `limit`.

        A failure in one job is logged and counted; it never aborts the batch.
        Raises PersistenceError only when the due-job query itself fails.
        """
        limit = limit or settings.OUTBOUND_RUN_LIMIT
        started = time.perf_counter()

        try:
            jobs = await self.repository.fetch_due_jobs(now, limit)
        except Exception as e:
            await self.audit.log_failure(
                event_type="outbound_runner_poll_failed",
                error_code="OUTBOUND_POLL_FAILED",
                error=e,
                actor_id=RUNNER_ACTOR,
                input_redacted={"limit": limit, "now": now.isoformat()},
            )
            raise

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(job: OutboundJob) -> JobResult:
            async with semaphore:
                try:
                    return await self.process_job(job, now)
                except Exception as e:
                    logger.error(
                        "Outbound job processing failed",
                        job_id=job.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return JobResult(job_id=job.id, status="error", error_code=type(e).__name__)

        results = await asyncio.gather(*(run_one(job) for job in jobs))

        summary = self._summarize(results)
        duration_ms = (time.perf_counter() - started) * 1000
        log_batch_result("outbound_run", summary, duration_ms)

        await self.audit.log(
            event_type="outbound_runner_completed",
            actor_id=RUNNER_ACTOR,
            input_redacted={"limit": limit, "now": now.isoformat(), "due_jobs": len(jobs)},
            output_redacted=summary,
        )

        return {
            "now": now.isoformat(),
            **summary,
            "results": [
                {"job_id": r.job_id, "status": r.status, "attempt_number": r.attempt_number, "error_code": r.error_code}
                for r in results
            ],
        }

    @staticmethod
    def _summarize(results: list[JobResult]) -> dict[str, int]:
        summary = {
            "processed": len(results),
            STATUS_SENT: 0,
            STATUS_FAILED: 0,
            STATUS_AWAITING_VERIFICATION: 0,
            STATUS_QUEUED: 0,
            STATUS_CANCELLED: 0,
            "skipped": 0,
            "errors": 0,
        }
        for result in results:
            if result.skipped:
                summary["skipped"] += 1
            elif result.status == "error":
                summary["errors"] += 1
            elif result.status in summary:
                summary[result.status] += 1
        return summary

    # ------------------------------------------------------------------
    # Per-job contract
    # ------------------------------------------------------------------

    async def process_job(self, job: OutboundJob, now: datetime) -> JobResult:
        """
        Run one attempt for a queued job.

        The job object is updated in place to mirror what was persisted.
        """
        if job.status != STATUS_QUEUED:
            return JobResult(job_id=job.id, status=job.status, skipped=True)

        if job.attempt_count >= job.max_attempts:
            return await self._fail_exhausted(job, now)

        if self.eligibility is not None:
            cancelled = await self._enforce_eligibility(job, now)
            if cancelled is not None:
                return cancelled

        attempt_number = await self.repository.claim_job(
            job.id, job.attempt_count, now + self.claim_lease, now
        )
        if attempt_number is None:
            logger.info("Outbound job claimed elsewhere, skipping", job_id=job.id)
            return JobResult(job_id=job.id, status=job.status, skipped=True)
        job.attempt_count = attempt_number

        verifying = needs_verification(job)
        try:
            message = render_verify_prompt(job) if verifying else render_message(job)
            receipt = await self.providers.send(job, message.text, subject=message.subject, html=message.html)
        except ProviderError as e:
            return await self._handle_send_failure(job, attempt_number, e, now)
        except Exception as e:
            # The claimed attempt still has to be finalized or the job would sit
            # queued at a spent attempt number.
            logger.error(
                "Unexpected error during outbound send",
                job_id=job.id,
                attempt_number=attempt_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            error = ProviderError(str(e) or type(e).__name__, code="OUTBOUND_SEND_ERROR")
            return await self._handle_send_failure(job, attempt_number, error, now)

        if verifying:
            return await self._finish_verification_prompt(job, attempt_number, receipt, now)
        return await self._finish_sent(job, attempt_number, receipt, message.outcome_code, now)

    async def _enforce_eligibility(self, job: OutboundJob, now: datetime) -> JobResult | None:
        decision = await self.eligibility.evaluate(job, now)

        if decision.eligible:
            if not job.bank_customer_id and decision.resolved_bank_customer_id:
                await self.repository.set_customer(job.id, decision.resolved_bank_customer_id, now)
                job.bank_customer_id = decision.resolved_bank_customer_id
            return None

        reason = decision.reasons[0]
        outcome = OUTCOME_OPT_OUT if REASON_DNC in decision.reasons else None
        applied = await self.repository.cancel_job(
            job.id, (STATUS_QUEUED,), reason, ",".join(decision.reasons), outcome, now
        )
        if not applied:
            return JobResult(job_id=job.id, status=job.status, skipped=True)

        job.status = STATUS_CANCELLED
        job.next_attempt_at = None
        job.cancel_reason_code = reason
        job.outcome_code = outcome

        await self.audit.log(
            event_type="outbound_job_cancelled_ineligible",
            actor_id=RUNNER_ACTOR,
            bank_customer_id=job.bank_customer_id,
            input_redacted={"outbound_job_id": job.id, "reasons": decision.reasons},
            output_redacted={"status": STATUS_CANCELLED},
        )
        logger.info("Outbound job cancelled as ineligible", job_id=job.id, reasons=decision.reasons)
        return JobResult(job_id=job.id, status=STATUS_CANCELLED, error_code=reason)

    @staticmethod
    def _attempt(
        job: OutboundJob,
        attempt_number: int,
        status: str,
        receipt: ProviderReceipt | None = None,
        outcome_code: str | None = None,
        error: ProviderError | None = None,
    ) -> OutboundAttempt:
        if receipt:
            provider = receipt.provider
        elif error and error.provider != "other":
            provider = error.provider
        else:
            provider = provider_for_channel(job.channel)

        return OutboundAttempt(
            outbound_job_id=job.id,
            attempt_number=attempt_number,
            channel=job.channel,
            provider=provider,
            status=status,
            provider_message_id=receipt.message_id if receipt else None,
            provider_call_sid=receipt.call_sid if receipt else None,
            outcome_code=outcome_code,
            error_code=error.code if error else None,
            error_message=error.message if error else None,
        )

    async def _superseded(self, job: OutboundJob, attempt_number: int) -> JobResult:
        """The job moved (e.g. cancelled) while the attempt was in flight."""
        current = await self.repository.get_job(job.id)
        status = current.status if current else job.status
        logger.warning(
            "Outbound job changed during attempt; attempt recorded, job left as is",
            job_id=job.id,
            attempt_number=attempt_number,
            current_status=status,
        )
        if current:
            job.status = current.status
        return JobResult(job_id=job.id, status=status, attempt_number=attempt_number, skipped=True)

    async def _finish_verification_prompt(
        self, job: OutboundJob, attempt_number: int, receipt: ProviderReceipt, now: datetime
    ) -> JobResult:
        attempt = self._attempt(job, attempt_number, "sent", receipt, OUTCOME_SUCCESS_UNVERIFIED)
        transition = JobTransition(
            status=STATUS_AWAITING_VERIFICATION,
            next_attempt_at=None,
            outcome_code=OUTCOME_SUCCESS_UNVERIFIED,
            payload_patch={"verification_state": VERIFICATION_PENDING},
        )
        if not await self.repository.complete_attempt(attempt, transition, now):
            return await self._superseded(job, attempt_number)

        job.status = STATUS_AWAITING_VERIFICATION
        job.next_attempt_at = None
        job.outcome_code = OUTCOME_SUCCESS_UNVERIFIED
        job.payload = {**job.payload, "verification_state": VERIFICATION_PENDING}

        await self.audit.log(
            event_type="outbound_job_sent_verify_prompt",
            actor_id=RUNNER_ACTOR,
            bank_customer_id=job.bank_customer_id,
            input_redacted={"outbound_job_id": job.id, "attempt_number": attempt_number, "channel": job.channel},
            output_redacted={"status": STATUS_AWAITING_VERIFICATION},
        )
        return JobResult(job_id=job.id, status=STATUS_AWAITING_VERIFICATION, attempt_number=attempt_number)

    async def _finish_sent(
        self,
        job: OutboundJob,
        attempt_number: int,
        receipt: ProviderReceipt,
        outcome_code: str,
        now: datetime,
    ) -> JobResult:
        attempt = self._attempt(job, attempt_number, "sent", receipt, outcome_code)
        transition = JobTransition(status=STATUS_SENT, next_attempt_at=None, outcome_code=outcome_code)
        if not await self.repository.complete_attempt(attempt, transition, now):
            return await self._superseded(job, attempt_number)

        job.status = STATUS_SENT
        job.next_attempt_at = None
        job.outcome_code = outcome_code

        await self.audit.log(
            event_type="outbound_job_sent",
            actor_id=RUNNER_ACTOR,
            bank_customer_id=job.bank_customer_id,
            input_redacted={"outbound_job_id": job.id, "attempt_number": attempt_number, "channel": job.channel},
            output_redacted={
                "status": STATUS_SENT,
                "outcome_code": outcome_code,
                "provider_message_id": receipt.message_id or receipt.call_sid,
            },
        )
        logger.info("Outbound job sent", job_id=job.id, attempt_number=attempt_number, outcome_code=outcome_code)
        return JobResult(job_id=job.id, status=STATUS_SENT, attempt_number=attempt_number)

    async def _handle_send_failure(
        self, job: OutboundJob, attempt_number: int, error: ProviderError, now: datetime
    ) -> JobResult:
        exhausted = attempt_number >= job.max_attempts
        attempt = self._attempt(job, attempt_number, "failed", outcome_code=OUTCOME_FAILED_DELIVERY, error=error)

        if exhausted:
            transition = JobTransition(
                status=STATUS_FAILED,
                next_attempt_at=None,
                outcome_code=OUTCOME_FAILED_DELIVERY,
                last_error_code=error.code,
                last_error_message=error.message,
            )
        else:
            transition = JobTransition(
                status=STATUS_QUEUED,
                next_attempt_at=now + self.backoff.delay(job.channel, attempt_number),
                last_error_code=error.code,
                last_error_message=error.message,
            )

        if not await self.repository.complete_attempt(attempt, transition, now):
            return await self._superseded(job, attempt_number)

        job.status = transition.status
        job.next_attempt_at = transition.next_attempt_at
        job.last_error_code = error.code
        job.last_error_message = error.message
        if exhausted:
            job.outcome_code = OUTCOME_FAILED_DELIVERY

        logger.warning(
            "Outbound send failed",
            job_id=job.id,
            attempt_number=attempt_number,
            max_attempts=job.max_attempts,
            error_code=error.code,
            next_status=transition.status,
        )
        await self.audit.log(
            event_type="outbound_job_send_failed",
            actor_id=RUNNER_ACTOR,
            bank_customer_id=job.bank_customer_id,
            input_redacted={"outbound_job_id": job.id, "attempt_number": attempt_number, "channel": job.channel},
            output_redacted={"error_code": error.code, "status": transition.status},
            success=False,
            error_code=error.code,
            error_message=error.message,
        )

        if exhausted:
            await self._escalate(job, attempt_number, error, now)

        return JobResult(job_id=job.id, status=transition.status, attempt_number=attempt_number, error_code=error.code)

    async def _fail_exhausted(self, job: OutboundJob, now: datetime) -> JobResult:
        """
        Close out a queued job whose attempts are all spent.

        This happens when a run claimed the last attempt and died before
        recording its outcome. No further send is made.
        """
        error = ProviderError("Attempt interrupted before its outcome was recorded", code="ATTEMPT_INTERRUPTED")
        applied = await self.repository.fail_exhausted(job.id, error.code, error.message, now)
        if not applied:
            return JobResult(job_id=job.id, status=job.status, skipped=True)

        job.status = STATUS_FAILED
        job.next_attempt_at = None
        job.outcome_code = OUTCOME_FAILED_DELIVERY
        job.last_error_code = error.code
        job.last_error_message = error.message

        logger.warning(
            "Outbound job exhausted by an interrupted attempt",
            job_id=job.id,
            attempt_count=job.attempt_count,
            max_attempts=job.max_attempts,
        )
        await self.audit.log(
            event_type="outbound_job_send_failed",
            actor_id=RUNNER_ACTOR,
            bank_customer_id=job.bank_customer_id,
            input_redacted={"outbound_job_id": job.id, "attempt_number": job.attempt_count, "channel": job.channel},
            output_redacted={"error_code": error.code, "status": STATUS_FAILED},
            success=False,
            error_code=error.code,
            error_message=error.message,
        )
        await self._escalate(job, job.attempt_count, error, now)
        return JobResult(job_id=job.id, status=STATUS_FAILED, attempt_number=job.attempt_count, error_code=error.code)

    async def _escalate(self, job: OutboundJob, attempt_number: int, error: ProviderError, now: datetime) -> None:
        """Record the max-attempts failure in the outbox; never fails the job flow."""
        result = await self.outbox.emit(
            AutomationEventTypes.OUTBOUND_FAILED_MAX_ATTEMPTS,
            f"outbound_failed:{job.id}",
            {
                "outbound_job_id": job.id,
                "channel": job.channel,
                "target_hint": address_hint(job.target_address),
                "attempt_count": attempt_number,
                "max_attempts": job.max_attempts,
                "last_error_code": error.code,
                "last_error_message": error.message,
                "at": now.isoformat(),
            },
            now,
        )
        if not result.ok:
            logger.error("Failed to record outbound escalation", job_id=job.id, error=result.error)


def build_outbound_runner() -> OutboundJobRunner:
    """Runner wired from settings."""
    return OutboundJobRunner(
        eligibility=OutboundEligibility() if settings.OUTBOUND_ELIGIBILITY_ENABLED else None,
        backoff=BackoffPolicy.from_settings(settings.get_backoff_config()),
        claim_lease_seconds=settings.OUTBOUND_CLAIM_LEASE_SECONDS,
        concurrency=settings.OUTBOUND_RUN_CONCURRENCY,
    )


outbound_runner = build_outbound_runner()
