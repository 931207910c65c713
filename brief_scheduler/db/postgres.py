"""
Database liveness probe used by the readiness endpoint.
"""

from brief_scheduler.db.helpers import fetch_one
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def check_db():
    """
    Returns True if SELECT 1 succeeds, otherwise the error string.
    """
    try:
        row = await fetch_one("SELECT 1 AS ok")

        if row and list(row.values())[0] == 1:
            return True
        return "Unexpected result from database check"

    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return str(e)
