"""
Next-run calculation for daily brief preferences.

Turns a recurrence preference into the next UTC instant at which the
user's brief should be generated. Timezone handling goes through
``zoneinfo`` so the same wall-clock target maps to the right UTC offset on
either side of a DST transition.

Calculation failures are returned as ``PreferenceValidationError`` values
rather than raised, so the sweep can log and move on to the next user.
"""

import re
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from brief_scheduler.features.daily_brief.domain import (
    PreferenceValidationError,
    RecurrencePreference,
)
from brief_scheduler.features.daily_brief.domain.models import DEFAULT_WEEKLY_DAY, FREQUENCIES
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_TIME_PART = re.compile(r"^\d{1,2}$")


def parse_time_of_day(value: str) -> tuple[int, int, int]:
    """
    Split ``HH:MM[:SS]`` into integer components.

    Raises:
        PreferenceValidationError: malformed string or a component out of range
    """
    parts = value.strip().split(":")
    if len(parts) < 2 or len(parts) > 3:
        raise PreferenceValidationError(f"Invalid time format: {value}", field="time_of_day")

    if len(parts) == 2:
        parts.append("0")

    if not all(_TIME_PART.match(part) for part in parts):
        raise PreferenceValidationError(f"Invalid time format: {value}", field="time_of_day")

    hours, minutes, seconds = (int(part) for part in parts)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise PreferenceValidationError(
            f"Invalid time components: {hours}:{minutes}:{seconds}", field="time_of_day"
        )

    return hours, minutes, seconds


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise PreferenceValidationError(f"Unknown timezone: {name}", field="timezone") from e


def sunday_based_weekday(moment: datetime) -> int:
    """0=Sunday .. 6=Saturday, matching the preference column."""
    return (moment.weekday() + 1) % 7


def compute_next_run(
    preference: RecurrencePreference, now: datetime
) -> datetime | PreferenceValidationError:
    """
    Compute the next UTC run time for a preference.

    Args:
        preference: the user's recurrence preference
        now: reference instant; naive values are treated as UTC

    Returns:
        Aware UTC datetime with whole-second precision, or the
        PreferenceValidationError describing why no time could be computed.
    """
    try:
        return _compute_next_run(preference, now)
    except PreferenceValidationError as e:
        e.user_id = preference.user_id
        logger.warning(
            "Could not calculate next run time",
            user_id=preference.user_id,
            field=e.field,
            error=str(e),
        )
        return e


def _has_passed(candidate: datetime, now: datetime) -> bool:
    # Same-zone comparisons ignore fold, so compare instants
    return candidate.astimezone(UTC) < now


def _compute_next_run(preference: RecurrencePreference, now: datetime) -> datetime:
    frequency = preference.effective_frequency
    if frequency not in FREQUENCIES:
        raise PreferenceValidationError(f"Unknown frequency: {frequency}", field="frequency")

    hours, minutes, seconds = parse_time_of_day(preference.effective_time_of_day)
    tz = resolve_timezone(preference.effective_timezone)

    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    local_now = now.astimezone(tz)
    candidate = local_now.replace(
        hour=hours, minute=minutes, second=seconds, microsecond=0, fold=0
    )

    if frequency == "weekly":
        day_of_week = (
            preference.day_of_week if preference.day_of_week is not None else DEFAULT_WEEKLY_DAY
        )
        if not 0 <= day_of_week <= 6:
            raise PreferenceValidationError(
                f"Invalid day_of_week: {day_of_week}", field="day_of_week"
            )

        days_until_target = day_of_week - sunday_based_weekday(local_now)
        if days_until_target < 0 or (days_until_target == 0 and _has_passed(candidate, now)):
            days_until_target += 7
        candidate = candidate + timedelta(days=days_until_target)
    else:
        # "custom" has no cadence of its own and runs daily
        if _has_passed(candidate, now):
            candidate = candidate + timedelta(days=1)

    return candidate.astimezone(UTC)


def validate_preference(preference: RecurrencePreference) -> list[str]:
    """
    Collect every problem with a preference, for callers that write them.

    Unlike compute_next_run this does not stop at the first failure.
    """
    errors: list[str] = []

    if preference.frequency and preference.frequency not in FREQUENCIES:
        errors.append("Invalid frequency. Must be daily, weekly, or custom")

    if preference.time_of_day:
        parts = preference.time_of_day.split(":")
        if len(parts) < 2 or len(parts) > 3:
            errors.append("Invalid time_of_day format. Expected HH:MM:SS")
        else:
            limits = (("hours", 23), ("minutes", 59), ("seconds", 59))
            values = parts + ["0"] * (3 - len(parts))
            for (label, upper), raw in zip(limits, values):
                if not _TIME_PART.match(raw.strip()) or int(raw) > upper:
                    errors.append(f"Invalid {label} in time_of_day")

    if preference.day_of_week is not None and not 0 <= preference.day_of_week <= 6:
        errors.append("Invalid day_of_week. Must be between 0 (Sunday) and 6 (Saturday)")

    if preference.timezone:
        try:
            resolve_timezone(preference.timezone)
        except PreferenceValidationError:
            errors.append(f"Invalid timezone: {preference.timezone}")

    return errors
