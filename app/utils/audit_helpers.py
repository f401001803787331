"""
Audit Helper Utilities - One-line audit logging for admin endpoints.

Usage:
    from app.utils.audit_helpers import audit_admin_read

    await audit_admin_read(
        request=request,
        actor_id=actor_id,
        event_type="outbound_job_viewed",
        resource_id=job_id,
    )

The request id assigned by RequestContextMiddleware is attached
automatically so an audit row can be joined to the request's log lines.
"""

from typing import Any

from fastapi import Request

from app.infrastructure.audit.audit_logger import audit_logger


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def audit_admin_read(
    request: Request,
    actor_id: str,
    event_type: str,
    context: str = "outbound",
    resource_id: str | None = None,
    resource_count: int | None = None,
    filters: dict[str, Any] | None = None,
) -> bool:
    """
    Record that a staff member or internal caller read customer-adjacent data.

    Returns:
        True if logged successfully
    """
    input_redacted: dict[str, Any] = {"path": request.url.path}
    if resource_id:
        input_redacted["resource_id"] = resource_id
    if filters:
        input_redacted["filters"] = {k: v for k, v in filters.items() if v is not None}

    return await audit_logger.log(
        event_type=event_type,
        actor_type="agent",
        actor_id=actor_id,
        context=context,
        input_redacted=input_redacted,
        output_redacted={"resource_count": resource_count} if resource_count is not None else None,
        request_id=_request_id(request),
    )
