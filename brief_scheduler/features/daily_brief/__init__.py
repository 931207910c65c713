"""
Daily brief scheduling feature package.

This vertical slice keeps every layer of the brief scheduler co-located:
domain models and errors, the Postgres-backed stores, the scheduling
services (next-run calculation, engagement backoff, dispatch) and the
sweep job that ties them together.
"""

# Re-export the primary building blocks for easy access.
from .context import SchedulerContext, build_default_context  # noqa: F401
from .domain.models import BackoffDecision, RecurrencePreference, ScheduledJobIntent  # noqa: F401
from .jobs.sweep_job import DailyBriefSweepJob, start_daily_brief_scheduler  # noqa: F401
from .services.backoff import EngagementBackoffEngine  # noqa: F401
from .services.dispatcher import JobDispatcher  # noqa: F401
from .services.next_run import compute_next_run  # noqa: F401
