"""
Health and status app for the daily brief scheduler.

Runs alongside the worker so orchestration can probe liveness, readiness
and the state of the scheduling sweep. It exposes no brief-queueing API.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from brief_scheduler.config import settings
from brief_scheduler.db.pool import db_pool
from brief_scheduler.infrastructure.observability.logging import get_logger, setup_logging
from brief_scheduler.routes import health
from brief_scheduler.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=not settings.debug)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        if settings.SWEEP_LOCK_ENABLED:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "redis" in startup_tasks:
            await fast_redis.close()

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    logger.info("Application shutting down")

    if "redis" in startup_tasks:
        await fast_redis.close()

    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))

    logger.info("Shutdown complete")


app = FastAPI(
    title="Daily Brief Scheduler",
    description="Health and status endpoints for the daily brief scheduler",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
