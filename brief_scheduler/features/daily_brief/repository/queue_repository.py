"""
Adapter over the queue_jobs table.

Jobs are inserted through the ``add_queue_job`` SQL function, which owns
dedup-key uniqueness; cancellation goes through
``cancel_brief_jobs_for_date`` so it is atomic per user and brief date.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from brief_scheduler.db.helpers import DatabaseError, fetch_all, fetch_one
from brief_scheduler.features.daily_brief.domain import DispatchError, JobHandle
from brief_scheduler.features.daily_brief.domain.models import ACTIVE_JOB_STATUSES
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class QueueRepository:
    """Enqueue, look up and cancel queue_jobs rows."""

    SELECT_COLUMNS = (
        "id, queue_job_id, user_id, job_type, status, priority, scheduled_for, dedup_key, metadata"
    )

    @classmethod
    async def enqueue(
        cls,
        job_type: str,
        user_id: str,
        payload: dict[str, Any],
        *,
        priority: int,
        scheduled_for: datetime,
        dedup_key: str | None = None,
    ) -> JobHandle:
        """
        Add a job to the queue.

        When a job with the same dedup key already exists the SQL function
        returns that job's id, so the returned handle may describe an older
        row.
        """
        try:
            row = await fetch_one(
                """
                SELECT add_queue_job(
                    p_user_id => %s,
                    p_job_type => %s,
                    p_metadata => %s,
                    p_priority => %s,
                    p_scheduled_for => %s,
                    p_dedup_key => %s
                ) AS job_id
                """,
                (user_id, job_type, Jsonb(payload), priority, scheduled_for, dedup_key),
            )
            if not row or row.get("job_id") is None:
                raise DispatchError(
                    "add_queue_job returned no job id", operation="enqueue", user_id=user_id
                )

            job_row = await fetch_one(
                f"SELECT {cls.SELECT_COLUMNS} FROM queue_jobs WHERE id = %s", (row["job_id"],)
            )
        except DatabaseError as e:
            raise DispatchError(
                f"Failed to enqueue {job_type}: {e}",
                operation="enqueue",
                recoverable=e.recoverable,
                user_id=user_id,
            ) from e

        if not job_row:
            raise DispatchError(
                f"Queued job {row['job_id']} not found", operation="enqueue", user_id=user_id
            )

        handle = JobHandle.from_row(job_row)
        logger.info(
            "Job queued",
            user_id=user_id,
            job_type=job_type,
            job_id=handle.id,
            queue_job_id=handle.queue_job_id,
            priority=priority,
            scheduled_for=scheduled_for.isoformat(),
            dedup_key=dedup_key,
        )
        return handle

    @classmethod
    async def find_jobs(
        cls,
        user_id: str,
        job_type: str,
        statuses: tuple[str, ...] | list[str],
        start: datetime,
        end: datetime,
    ) -> list[JobHandle]:
        """Jobs for one user in the given statuses with start <= scheduled_for <= end."""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM queue_jobs
            WHERE user_id = %s
              AND job_type = %s
              AND status = ANY(%s)
              AND scheduled_for >= %s
              AND scheduled_for <= %s
            ORDER BY scheduled_for
        """
        try:
            rows = await fetch_all(query, (user_id, job_type, list(statuses), start, end))
        except DatabaseError as e:
            raise DispatchError(
                f"Failed to look up existing jobs: {e}",
                operation="find_jobs",
                recoverable=e.recoverable,
                user_id=user_id,
            ) from e

        return [JobHandle.from_row(row) for row in rows]

    @classmethod
    async def find_active_jobs_for_users(
        cls, user_ids: list[str], job_type: str
    ) -> list[JobHandle]:
        """Pending or processing jobs of one type for many users at once."""
        if not user_ids:
            return []

        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM queue_jobs
            WHERE user_id = ANY(%s::uuid[])
              AND job_type = %s
              AND status = ANY(%s)
        """
        try:
            rows = await fetch_all(query, (list(user_ids), job_type, list(ACTIVE_JOB_STATUSES)))
        except DatabaseError as e:
            raise DispatchError(
                f"Failed to look up active jobs: {e}",
                operation="find_active_jobs_for_users",
                recoverable=e.recoverable,
            ) from e

        return [JobHandle.from_row(row) for row in rows]

    @classmethod
    async def cancel_for_user_and_date(cls, user_id: str, brief_date: str) -> int:
        """Cancel pending/processing brief jobs for one user and brief date."""
        try:
            row = await fetch_one(
                """
                SELECT cancelled_count
                FROM cancel_brief_jobs_for_date(p_user_id => %s, p_brief_date => %s)
                """,
                (user_id, brief_date),
            )
        except DatabaseError as e:
            raise DispatchError(
                f"Failed to cancel brief jobs: {e}",
                operation="cancel_for_user_and_date",
                recoverable=e.recoverable,
                user_id=user_id,
            ) from e

        cancelled = int(row["cancelled_count"] or 0) if row else 0
        if cancelled:
            logger.info(
                "Cancelled existing brief jobs",
                user_id=user_id,
                brief_date=brief_date,
                cancelled=cancelled,
            )
        return cancelled
