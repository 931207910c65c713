"""Scheduling services: next-run calculation, engagement backoff, dispatch."""

from .backoff import EngagementBackoffEngine, days_between, decide
from .dispatcher import JobDispatcher, brief_dedup_key, forced_dedup_key
from .next_run import compute_next_run, parse_time_of_day, validate_preference

__all__ = [
    "EngagementBackoffEngine",
    "JobDispatcher",
    "brief_dedup_key",
    "compute_next_run",
    "days_between",
    "decide",
    "forced_dedup_key",
    "parse_time_of_day",
    "validate_preference",
]
