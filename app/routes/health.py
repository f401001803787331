"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "outbound-automation"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: database pool round trip plus configuration sanity.
    Returns 503 when the service should not receive traffic.
    """
    checks = {}

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }

    config_ok = bool(settings.SUPABASE_DB_URL)
    config_warnings = []
    if settings.OUTBOUND_PROVIDER_MODE == "live" and not settings.twilio_configured():
        config_warnings.append("Twilio credentials not set; voice/sms/whatsapp use the mock sender")

    checks["configuration"] = {
        "ok": config_ok,
        "issues": None if config_ok else ["SUPABASE_DB_URL not set"],
        "warnings": config_warnings or None,
        "environment": settings.environment,
    }

    overall_ok = checks["database"]["ok"] and config_ok
    body = {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
