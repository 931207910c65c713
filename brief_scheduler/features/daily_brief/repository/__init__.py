"""Postgres-backed stores used by the daily brief scheduler."""

from brief_scheduler.features.daily_brief.repository.engagement_repository import (
    EngagementRepository,
)
from brief_scheduler.features.daily_brief.repository.preference_repository import (
    PreferenceRepository,
    PreferenceRepositoryError,
)
from brief_scheduler.features.daily_brief.repository.queue_repository import QueueRepository

__all__ = [
    "EngagementRepository",
    "PreferenceRepository",
    "PreferenceRepositoryError",
    "QueueRepository",
]
