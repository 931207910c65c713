"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, brings up logging, the database pool and (when the sweep lock is
enabled) Redis, then delegates to the matching job.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable

from brief_scheduler.config import settings
from brief_scheduler.db.pool import db_pool
from brief_scheduler.features.daily_brief.jobs.sweep_job import (
    run_daily_brief_sweep,
    start_daily_brief_scheduler,
)
from brief_scheduler.infrastructure.observability.logging import get_logger, setup_logging
from brief_scheduler.services.redis_client import fast_redis

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


async def run_daily_brief_sweep_once() -> None:
    """Run one sweep and exit."""
    metrics = await run_daily_brief_sweep()
    logger.info("Single daily brief sweep finished", **metrics)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "daily_brief_scheduler": start_daily_brief_scheduler,
    "daily_brief_sweep_once": run_daily_brief_sweep_once,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB setting."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return settings.WORKER_JOB.strip().lower()


async def _initialize_resources() -> list[str]:
    started = []
    await db_pool.initialize()
    started.append("database_pool")

    if settings.SWEEP_LOCK_ENABLED:
        try:
            await fast_redis.initialize()
            started.append("redis")
        except RuntimeError as e:
            # The sweep runs without the lease when Redis is unreachable
            logger.warning("Redis unavailable, sweep lock disabled for now", error=str(e))

    return started


async def _close_resources(started: list[str]) -> None:
    if "redis" in started:
        await fast_redis.close()
    if "database_pool" in started:
        try:
            await db_pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))


async def run_worker(job_name: str | None = None, manage_resources: bool = True) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)

    started: list[str] = []
    try:
        if manage_resources:
            started = await _initialize_resources()
        await JOB_REGISTRY[name]()
    finally:
        await _close_resources(started)
        logger.info("Background worker stopped", job=name)


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=not settings.debug)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
