"""
Health check endpoints for the scheduler service.
"""

import time

from fastapi import APIRouter

from brief_scheduler.config import settings
from brief_scheduler.db.pool import db_health_check
from brief_scheduler.db.postgres import check_db
from brief_scheduler.features.daily_brief.jobs.sweep_job import get_daily_brief_sweep_job
from brief_scheduler.infrastructure.observability.logging import log_dependency_check
from brief_scheduler.services.redis_client import fast_redis

router = APIRouter()


async def redis_ping() -> bool:
    return await fast_redis.ping()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "daily-brief-scheduler"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check for the backing stores the sweep depends on.
    """
    checks = {}
    overall_ok = True

    # 1) Postgres
    t0 = time.time()
    try:
        db_result = await check_db()
        latency_ms = round((time.time() - t0) * 1000, 1)
        db_ok = db_result is True
        checks["postgres"] = {"ok": db_ok, "latency_ms": latency_ms}
        if not db_ok:
            checks["postgres"]["error"] = db_result
        log_dependency_check("postgres", db_ok, latency_ms, None if db_ok else str(db_result))
        overall_ok = overall_ok and db_ok
    except Exception as e:
        checks["postgres"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        postgres = checks["postgres"]
        log_dependency_check("postgres", False, postgres["latency_ms"], postgres["error"])
        overall_ok = False

    # 2) Redis, only required when it guards the sweep
    t0 = time.time()
    try:
        redis_ok = bool(await redis_ping())
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["redis"] = {
            "ok": redis_ok,
            "latency_ms": latency_ms,
            "required": settings.SWEEP_LOCK_ENABLED,
        }
        log_dependency_check(
            "redis", redis_ok, latency_ms, required=settings.SWEEP_LOCK_ENABLED
        )
        if settings.SWEEP_LOCK_ENABLED:
            overall_ok = overall_ok and redis_ok
    except Exception as e:
        checks["redis"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "required": settings.SWEEP_LOCK_ENABLED,
        }
        log_dependency_check(
            "redis", False, None, checks["redis"]["error"], required=settings.SWEEP_LOCK_ENABLED
        )
        if settings.SWEEP_LOCK_ENABLED:
            overall_ok = False

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/scheduler/status")
async def scheduler_status():
    """Sweep job status plus its health verdict."""
    job = get_daily_brief_sweep_job()
    return {"status": job.get_job_status(), "health": job.health_check()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
