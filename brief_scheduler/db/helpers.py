"""
Query helpers shared by the scheduler repositories.

Every psycopg failure surfaces as DatabaseError; connection-level failures
are marked recoverable so ``with_db_retry`` can try them again.
"""

import asyncio
import functools
from typing import Any

import psycopg

from brief_scheduler.db.pool import get_db_connection
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def _execute(
    query: str,
    params: tuple,
    connection: psycopg.AsyncConnection | None,
    many: bool,
) -> Any:
    async def _run(conn: psycopg.AsyncConnection):
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            if many:
                return await cur.fetchall()
            return await cur.fetchone()

    operation = "fetch_all" if many else "fetch_one"
    try:
        if connection:
            return await _run(connection)
        async with await get_db_connection() as conn:
            return await _run(conn)

    except psycopg.Error as e:
        logger.error(f"Database {operation} error", query=query[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}",
            operation=operation,
            recoverable=isinstance(e, psycopg.OperationalError),
        ) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Dict with row data or None if no results
    """
    row = await _execute(query, params, connection, many=False)
    return row or None


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return all rows as list of dicts."""
    return await _execute(query, params, connection, many=True)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository call on recoverable database failures.

    Delays grow exponentially from ``base_delay``. Errors marked
    non-recoverable are re-raised on the first attempt.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not e.recoverable:
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
