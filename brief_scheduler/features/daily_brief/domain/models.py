"""
Domain models for the daily brief scheduler.

Plain dataclasses shared by the repositories, the scheduling services and
the sweep job. Only parsing/normalisation helpers live here; scheduling
decisions belong to the service layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any

DEFAULT_FREQUENCY = "daily"
DEFAULT_TIME_OF_DAY = "09:00:00"
DEFAULT_TIMEZONE = "UTC"
DEFAULT_WEEKLY_DAY = 1  # Monday

FREQUENCIES = ("daily", "weekly", "custom")

DAILY_BRIEF_JOB_TYPE = "generate_daily_brief"
ACTIVE_JOB_STATUSES = ("pending", "processing")

PRIORITY_IMMEDIATE = 1
PRIORITY_SCHEDULED = 10


@dataclass(slots=True)
class RecurrencePreference:
    """A user_brief_preferences row as seen by the scheduler."""

    user_id: str | None
    frequency: str | None = DEFAULT_FREQUENCY
    time_of_day: str | None = DEFAULT_TIME_OF_DAY
    timezone: str | None = DEFAULT_TIMEZONE
    day_of_week: int | None = None  # 0=Sunday .. 6=Saturday, weekly only
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RecurrencePreference":
        time_of_day = row.get("time_of_day")
        if isinstance(time_of_day, time):
            time_of_day = time_of_day.strftime("%H:%M:%S")

        user_id = row.get("user_id")
        return cls(
            user_id=str(user_id) if user_id is not None else None,
            frequency=row.get("frequency"),
            time_of_day=time_of_day,
            timezone=row.get("timezone"),
            day_of_week=row.get("day_of_week"),
            is_active=bool(row.get("is_active", True)),
        )

    @property
    def effective_frequency(self) -> str:
        return self.frequency or DEFAULT_FREQUENCY

    @property
    def effective_time_of_day(self) -> str:
        return self.time_of_day or DEFAULT_TIME_OF_DAY

    @property
    def effective_timezone(self) -> str:
        return self.timezone or DEFAULT_TIMEZONE


@dataclass(slots=True, frozen=True)
class BackoffDecision:
    """Outcome of the engagement backoff check for one user."""

    should_send: bool
    is_reengagement: bool
    days_since_last_login: int
    reason: str

    def engagement_metadata(self) -> dict[str, Any]:
        return {
            "isReengagement": self.is_reengagement,
            "daysSinceLastLogin": self.days_since_last_login,
        }


@dataclass(slots=True)
class ScheduledJobIntent:
    """A job the dispatcher will try to place on the external queue."""

    job_type: str
    user_id: str
    brief_date: str
    timezone: str
    scheduled_for: datetime
    priority: int
    dedup_key: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_immediate(self) -> bool:
        return self.priority == PRIORITY_IMMEDIATE


@dataclass(slots=True)
class JobHandle:
    """A queue_jobs row returned by the queue store."""

    id: str
    queue_job_id: str | None
    user_id: str
    job_type: str
    status: str
    priority: int
    scheduled_for: datetime
    dedup_key: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "JobHandle":
        queue_job_id = row.get("queue_job_id")
        return cls(
            id=str(row["id"]),
            queue_job_id=str(queue_job_id) if queue_job_id is not None else None,
            user_id=str(row["user_id"]),
            job_type=row["job_type"],
            status=row["status"],
            priority=row.get("priority") or PRIORITY_SCHEDULED,
            scheduled_for=row["scheduled_for"],
            dedup_key=row.get("dedup_key"),
            payload=row.get("metadata") or {},
        )


@dataclass(slots=True)
class DispatchReport:
    """Result of dispatching a batch of intents."""

    queued: list[JobHandle] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
