"""
Read access to user_brief_preferences.

The scheduler never writes preferences; the user-facing application owns
them.
"""

from brief_scheduler.db.helpers import DatabaseError, fetch_all, with_db_retry
from brief_scheduler.features.daily_brief.domain import RecurrencePreference
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PreferenceRepositoryError(DatabaseError):
    """Preference load failed."""


class PreferenceRepository:
    """Loads recurrence preferences for the sweep."""

    SELECT_COLUMNS = "user_id, frequency, time_of_day, timezone, day_of_week, is_active"

    @classmethod
    @with_db_retry(max_retries=2)
    async def list_active_preferences(cls) -> list[RecurrencePreference]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM user_brief_preferences
            WHERE is_active = true
        """

        try:
            rows = await fetch_all(query)
        except DatabaseError as e:
            raise PreferenceRepositoryError(
                f"Failed to load active preferences: {e}",
                operation="list_active_preferences",
                recoverable=e.recoverable,
            ) from e

        preferences = [RecurrencePreference.from_row(row) for row in rows]
        logger.debug("Loaded active brief preferences", count=len(preferences))
        return preferences
