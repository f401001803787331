"""
One-shot background worker.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the database pool, runs one batch and exits. Scheduling
(cron, platform schedulers) lives outside the process.

    python -m app.jobs.worker outbound_run
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from app.config import settings
from app.db.pool import db_pool
from app.features.automation.services import automation_dispatcher, operational_checkers
from app.features.outbound.services import outbound_runner
from app.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[datetime], Awaitable[dict]]


async def run_outbound(now: datetime) -> dict:
    return await outbound_runner.run_due_jobs(now)


async def run_dispatch(now: datetime) -> dict:
    return await automation_dispatcher.dispatch(now)


async def run_otp_stuck_check(now: datetime) -> dict:
    return await operational_checkers.check_otp_stuck(now)


async def run_daily_summary(now: datetime) -> dict:
    return await operational_checkers.daily_summary(now)


async def run_automation_cycle(now: datetime) -> dict:
    """Dispatch, then both checkers; a failing step does not stop the others."""
    results = {}
    for step, job in (
        ("dispatch", run_dispatch),
        ("otp_stuck", run_otp_stuck_check),
        ("daily_summary", run_daily_summary),
    ):
        try:
            results[step] = await job(now)
        except Exception as e:
            logger.error("Automation cycle step failed", step=step, error=str(e), error_type=type(e).__name__)
            results[step] = {"error": type(e).__name__}
    return results


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "outbound_run": run_outbound,
    "automation_dispatch": run_dispatch,
    "otp_stuck_check": run_otp_stuck_check,
    "daily_summary": run_daily_summary,
    "automation_cycle": run_automation_cycle,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "automation_cycle").strip().lower()


async def run_worker(job_name: str | None = None, now: datetime | None = None) -> dict:
    """Run the requested job once with an open database pool."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await db_pool.initialize()
    try:
        result = await JOB_REGISTRY[name](now or datetime.now(UTC))
    finally:
        await db_pool.close()

    logger.info("Background worker finished", job=name)
    return result


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
