"""
FastAPI application: outbound delivery and automation admin API.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.errors import ValidationError
from app.db.helpers import PersistenceError
from app.db.pool import db_pool
from app.features.automation.api.router import router as automation_router
from app.features.outbound.api.router import router as outbound_router
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and close it on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    yield

    logger.info("Application shutting down")
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))


app = FastAPI(
    title="Outbound Delivery & Automation",
    description="Outbound job runner, verification gate and automation outbox",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(outbound_router)
app.include_router(automation_router)


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    body = {"error": "validation_error", "message": exc.message}
    if exc.field:
        body["field"] = exc.field
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


@app.exception_handler(PersistenceError)
async def handle_persistence_error(request: Request, exc: PersistenceError):
    logger.error("Persistence failure", path=request.url.path, operation=exc.operation, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "persistence_unavailable", "message": "Storage temporarily unavailable"},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        request.method,
        request.url.path,
        response.status_code,
        round((time.time() - start_time) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
