"""
Domain subpackage for the daily brief scheduler.
"""

from .errors import (
    DispatchError,
    EngagementDataError,
    PreferenceValidationError,
    SchedulerError,
    SchedulingSweepError,
)
from .models import (
    ACTIVE_JOB_STATUSES,
    DAILY_BRIEF_JOB_TYPE,
    PRIORITY_IMMEDIATE,
    PRIORITY_SCHEDULED,
    BackoffDecision,
    DispatchReport,
    JobHandle,
    RecurrencePreference,
    ScheduledJobIntent,
)

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "DAILY_BRIEF_JOB_TYPE",
    "PRIORITY_IMMEDIATE",
    "PRIORITY_SCHEDULED",
    "BackoffDecision",
    "DispatchError",
    "DispatchReport",
    "EngagementDataError",
    "JobHandle",
    "PreferenceValidationError",
    "RecurrencePreference",
    "ScheduledJobIntent",
    "SchedulerError",
    "SchedulingSweepError",
]
