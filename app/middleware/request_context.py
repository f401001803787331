"""
RequestContext Middleware - Adds request tracking to all requests.

Adds to request.state:
- request_id: caller-supplied X-Request-ID or a fresh UUID
- ip_address: Client IP address

request_id is also bound into structlog's context so every log line
emitted while serving the request carries it, and it is passed to audit
entries written by admin routes.
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_REQUEST_ID_LENGTH = 128


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, bind it for logging and echo it as X-Request-ID."""

    async def dispatch(self, request: Request, call_next):
        incoming = (request.headers.get("x-request-id") or "").strip()
        request_id = incoming[:MAX_REQUEST_ID_LENGTH] if incoming else str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = self._extract_client_ip(request)

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        Client IP, trusting X-Forwarded-For only when the direct peer is a
        configured proxy.
        """
        if not settings.TRUST_X_FORWARDED_FOR:
            return request.client.host if request.client else None

        if request.client and request.client.host in settings.TRUSTED_PROXY_IPS:
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                # "client, proxy1, proxy2"
                ip_address = forwarded_for.split(",")[0].strip()
                logger.debug("Using X-Forwarded-For from trusted proxy", proxy_ip=request.client.host)
                return ip_address

        return request.client.host if request.client else None
