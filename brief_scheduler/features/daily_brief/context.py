"""
Explicit dependencies for a scheduling sweep.

The sweep never reaches for module-level stores directly; it is handed a
SchedulerContext. Production wiring lives in ``build_default_context``;
tests build their own context around in-memory fakes and a fixed clock.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from brief_scheduler.config import Settings, settings
from brief_scheduler.features.daily_brief.repository import (
    EngagementRepository,
    PreferenceRepository,
    QueueRepository,
)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class SchedulerContext:
    """Everything one sweep reads from or writes to."""

    preferences: Any
    engagement: Any
    queue: Any
    settings: Settings = field(default_factory=lambda: settings)
    clock: Callable[[], datetime] = utc_now
    lock_client: Any | None = None


def build_default_context(app_settings: Settings | None = None) -> SchedulerContext:
    """Wire the Postgres-backed stores and, when enabled, the Redis sweep lock."""
    app_settings = app_settings or settings

    lock_client = None
    if app_settings.SWEEP_LOCK_ENABLED:
        from brief_scheduler.services.redis_client import fast_redis

        lock_client = fast_redis

    return SchedulerContext(
        preferences=PreferenceRepository,
        engagement=EngagementRepository,
        queue=QueueRepository,
        settings=app_settings,
        lock_client=lock_client,
    )
