"""
Engagement facts used by the backoff engine.

Two facts per user: the last time they visited the app (users.last_visit)
and the last time a brief was successfully generated for them
(daily_briefs.generation_completed_at).
"""

from datetime import datetime

from brief_scheduler.db.helpers import DatabaseError, fetch_all, fetch_one
from brief_scheduler.features.daily_brief.domain import EngagementDataError
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EngagementRepository:
    """Point and bulk reads of last-activity / last-notification timestamps."""

    @classmethod
    async def get_last_activity(cls, user_id: str) -> datetime | None:
        query = "SELECT last_visit FROM users WHERE id = %s"
        try:
            row = await fetch_one(query, (user_id,))
        except DatabaseError as e:
            raise EngagementDataError(
                f"Failed to read last activity: {e}", operation="get_last_activity", user_id=user_id
            ) from e
        return row["last_visit"] if row else None

    @classmethod
    async def get_last_notification(cls, user_id: str) -> datetime | None:
        query = """
            SELECT generation_completed_at
            FROM daily_briefs
            WHERE user_id = %s
              AND generation_status = 'completed'
              AND generation_completed_at IS NOT NULL
            ORDER BY generation_completed_at DESC
            LIMIT 1
        """
        try:
            row = await fetch_one(query, (user_id,))
        except DatabaseError as e:
            raise EngagementDataError(
                f"Failed to read last notification: {e}",
                operation="get_last_notification",
                user_id=user_id,
            ) from e
        return row["generation_completed_at"] if row else None

    @classmethod
    async def get_last_activity_batch(cls, user_ids: list[str]) -> dict[str, datetime | None]:
        if not user_ids:
            return {}

        query = "SELECT id, last_visit FROM users WHERE id = ANY(%s::uuid[])"
        try:
            rows = await fetch_all(query, (list(user_ids),))
        except DatabaseError as e:
            raise EngagementDataError(
                f"Failed to read last activity batch: {e}", operation="get_last_activity_batch"
            ) from e

        return {str(row["id"]): row["last_visit"] for row in rows}

    @classmethod
    async def get_last_notification_batch(
        cls, user_ids: list[str]
    ) -> dict[str, datetime | None]:
        if not user_ids:
            return {}

        query = """
            SELECT DISTINCT ON (user_id) user_id, generation_completed_at
            FROM daily_briefs
            WHERE user_id = ANY(%s::uuid[])
              AND generation_status = 'completed'
              AND generation_completed_at IS NOT NULL
            ORDER BY user_id, generation_completed_at DESC
        """
        try:
            rows = await fetch_all(query, (list(user_ids),))
        except DatabaseError as e:
            raise EngagementDataError(
                f"Failed to read last notification batch: {e}",
                operation="get_last_notification_batch",
            ) from e

        logger.debug(
            "Loaded last brief timestamps", requested=len(user_ids), found=len(rows)
        )
        return {str(row["user_id"]): row["generation_completed_at"] for row in rows}
