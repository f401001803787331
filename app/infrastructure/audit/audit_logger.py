"""
AuditLogger - Append-only audit trail for outbound and automation actions.

Every state-changing action (job created, attempt sent, verification
requested/resumed, job cancelled, event retried, inbox item actioned) is
recorded here for compliance and debugging.

Usage:
    from app.infrastructure.audit import audit_logger

    await audit_logger.log(
        event_type="outbound_attempt_sent",
        actor_type="system",
        actor_id="outbound_runner",
        bank_customer_id=job.bank_customer_id,
        input_redacted={"outbound_job_id": job.id, "attempt_number": 1},
        output_redacted={"provider_message_id": "SM..."},
    )

Design Principles:
- Write to both structured logs (searchable) and database (immutable)
- Input/output documents are redacted again before storage
- Never fail the caller if audit logging fails
"""

from datetime import UTC, datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.security.redaction import redact_sensitive, redact_text

logger = get_logger(__name__)

ACTOR_TYPES = ("system", "agent", "customer", "admin")


class AuditLogger:
    """
    Centralized audit log writer.

    Writes to:
    1. Structured logs (stdout) - real-time monitoring
    2. Database (audit_logs table) - immutable, queryable

    The core never reads audit rows back; only the job-detail endpoint
    shows a tail of them.
    """

    @staticmethod
    async def log(
        event_type: str,
        actor_type: str = "system",
        actor_id: str | None = None,
        context: str | None = "outbound",
        bank_customer_id: str | None = None,
        conversation_id: str | None = None,
        case_id: str | None = None,
        input_redacted: dict[str, Any] | None = None,
        output_redacted: dict[str, Any] | None = None,
        success: bool = True,
        error_code: str | None = None,
        error_message: str | None = None,
        request_id: str | None = None,
        event_version: int = 1,
    ) -> bool:
        """
        Record an audit event.

        Args:
            event_type: Action name (e.g. "outbound_job_cancelled")
            actor_type: One of system/agent/customer/admin
            actor_id: Worker name, admin id or internal caller
            context: Redaction context ("outbound", "verification", ...)
            bank_customer_id: Customer the action concerns, when known
            conversation_id: Related conversation, when known
            case_id: Related case, when known
            input_redacted: Inputs of the action (redacted again here)
            output_redacted: Results of the action (redacted again here)
            success: Whether the action succeeded
            error_code: Stable error code for failures
            error_message: Failure detail (redacted)
            request_id: Request correlation ID for tracing
            event_version: Schema version of the input/output documents

        Returns:
            True if logged successfully, False if failed (never raises)
        """
        safe_input = redact_sensitive(input_redacted, context) if input_redacted else None
        safe_output = redact_sensitive(output_redacted, context) if output_redacted else None
        safe_error = redact_text(error_message) if error_message else None

        logger.info(
            "Audit event",
            audit_event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            bank_customer_id=bank_customer_id,
            success=success,
            error_code=error_code,
            request_id=request_id,
        )

        try:
            async with db_pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO audit_logs (
                        conversation_id, case_id, bank_customer_id,
                        actor_type, actor_id, event_type, event_version,
                        input_redacted, output_redacted, success,
                        error_code, error_message, request_id, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        conversation_id,
                        case_id,
                        bank_customer_id,
                        actor_type,
                        actor_id,
                        event_type,
                        event_version,
                        Jsonb(safe_input) if safe_input is not None else None,
                        Jsonb(safe_output) if safe_output is not None else None,
                        success,
                        error_code,
                        safe_error,
                        request_id,
                        datetime.now(UTC),
                    ),
                )

            return True

        except Exception as e:
            # Never fail the caller; keep enough context to recreate the row by hand
            logger.error(
                "CRITICAL: Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                audit_event_type=event_type,
                actor_id=actor_id,
                fallback_data={
                    "event_type": event_type,
                    "actor_type": actor_type,
                    "actor_id": actor_id,
                    "bank_customer_id": bank_customer_id,
                    "input_redacted": safe_input,
                    "success": success,
                    "error_code": error_code,
                    "request_id": request_id,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            )
            return False

    @staticmethod
    async def log_failure(
        event_type: str,
        error_code: str,
        error: BaseException | str | None = None,
        actor_type: str = "system",
        actor_id: str | None = None,
        **kwargs,
    ) -> bool:
        """
        Convenience wrapper for failed actions.

        Args:
            event_type: Action that failed
            error_code: Stable error code (e.g. "OUTBOUND_RUN_FAILED")
            error: Exception or message describing the failure
            actor_type: Actor type
            actor_id: Actor id
            **kwargs: Additional args passed to log()
        """
        return await AuditLogger.log(
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            success=False,
            error_code=error_code,
            error_message=str(error) if error is not None else None,
            **kwargs,
        )


# Global singleton instance
audit_logger = AuditLogger()
