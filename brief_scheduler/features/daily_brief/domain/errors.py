"""
Error taxonomy for the daily brief scheduler.

None of these are allowed to take the worker down: validation errors skip
one user, engagement errors fail open, dispatch errors skip one user and
sweep errors are swallowed by the scheduler loop.
"""


class SchedulerError(Exception):
    """Base class for scheduler failures."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        recoverable: bool = True,
        user_id: str | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable
        self.user_id = user_id


class PreferenceValidationError(SchedulerError):
    """A recurrence preference cannot be turned into a run time."""

    def __init__(self, message: str, field: str | None = None, user_id: str | None = None):
        super().__init__(message, operation="compute_next_run", recoverable=True, user_id=user_id)
        self.field = field


class EngagementDataError(SchedulerError):
    """Last-activity or last-notification facts could not be read."""


class DispatchError(SchedulerError):
    """The job queue rejected or failed an enqueue/lookup/cancel."""


class SchedulingSweepError(SchedulerError):
    """Infrastructure failure that aborted a whole sweep."""
