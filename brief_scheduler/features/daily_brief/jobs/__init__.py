"""
Job runners for the daily brief feature.
"""

from .sweep_job import (
    DailyBriefSweepJob,
    SweepMetrics,
    run_daily_brief_sweep,
    start_daily_brief_scheduler,
)

__all__ = [
    "DailyBriefSweepJob",
    "SweepMetrics",
    "run_daily_brief_sweep",
    "start_daily_brief_scheduler",
]
