"""
Engagement-based backoff for daily briefs.

Inactive users stop receiving a brief every day. Instead they get a short
cooling-off period, then a handful of re-engagement pulses spaced further
and further apart:

    days since login   decision
    ----------------   --------------------------------------------------
    no login recorded  send (brand-new user)
    0 - 2              send
    3                  skip (cooling off)
    4                  re-engagement, if the last brief is >= 2 days old
    5 - 9              skip
    10                 re-engagement, if the last brief is >= 6 days old
    11 - 30            skip
    31+                re-engagement, if the last brief is >= 31 days old

Coming back to the app resets the user to the active band automatically
since the decision is re-derived from the two timestamps on every sweep.

Read failures fail open: an engagement problem must never silently
suppress a legitimate brief.
"""

import asyncio
import math
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from brief_scheduler.features.daily_brief.domain import BackoffDecision
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ACTIVE_MAX_DAYS = 2
FIRST_REENGAGEMENT_DAY = 4
FIRST_REENGAGEMENT_MIN_GAP = 2
SECOND_REENGAGEMENT_DAY = 10
SECOND_REENGAGEMENT_MIN_GAP = 6
RECURRING_REENGAGEMENT_DAY = 31
RECURRING_REENGAGEMENT_MIN_GAP = 31

NO_LAST_VISIT_REASON = "No last visit recorded"
FAIL_OPEN_REASON = "Engagement check failed, defaulting to send"

DEFAULT_FALLBACK_CONCURRENCY = 10


def days_between(earlier: datetime | None, now: datetime) -> int | None:
    """Whole days from ``earlier`` to ``now``, floored and never negative."""
    if earlier is None:
        return None
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return max(0, math.floor((now - earlier) / timedelta(days=1)))


def decide(
    days_since_last_login: int | None,
    days_since_last_notification: float | None,
) -> BackoffDecision:
    """
    Classify a user into a backoff band.

    Args:
        days_since_last_login: None when the user has never logged in
        days_since_last_notification: None when no brief was ever sent

    Returns:
        BackoffDecision for this tick
    """
    if days_since_last_login is None:
        return BackoffDecision(
            should_send=True,
            is_reengagement=False,
            days_since_last_login=0,
            reason=NO_LAST_VISIT_REASON,
        )

    days = days_since_last_login
    since_brief = math.inf if days_since_last_notification is None else days_since_last_notification

    if days <= ACTIVE_MAX_DAYS:
        return _skip_or_send(days, True, False, "User is active (logged in within 2 days)")

    if days < FIRST_REENGAGEMENT_DAY:
        return _skip_or_send(days, False, False, "Cooling off period (3 days inactive)")

    if days == FIRST_REENGAGEMENT_DAY:
        if since_brief >= FIRST_REENGAGEMENT_MIN_GAP:
            return _skip_or_send(days, True, True, "4-day re-engagement email")
        return _skip_or_send(
            days, False, False, _waiting_reason(FIRST_REENGAGEMENT_MIN_GAP, since_brief)
        )

    if days < SECOND_REENGAGEMENT_DAY:
        return _skip_or_send(days, False, False, "First backoff period (5-9 days)")

    if days == SECOND_REENGAGEMENT_DAY:
        if since_brief >= SECOND_REENGAGEMENT_MIN_GAP:
            return _skip_or_send(days, True, True, "10-day re-engagement email")
        return _skip_or_send(
            days, False, False, _waiting_reason(SECOND_REENGAGEMENT_MIN_GAP, since_brief)
        )

    if days < RECURRING_REENGAGEMENT_DAY:
        return _skip_or_send(days, False, False, "Second backoff period (11-30 days)")

    if since_brief >= RECURRING_REENGAGEMENT_MIN_GAP:
        return _skip_or_send(
            days, True, True, f"31+ day re-engagement email (inactive for {days} days)"
        )
    return _skip_or_send(
        days, False, False, _waiting_reason(RECURRING_REENGAGEMENT_MIN_GAP, since_brief)
    )


def _skip_or_send(days: int, send: bool, reengagement: bool, reason: str) -> BackoffDecision:
    return BackoffDecision(
        should_send=send,
        is_reengagement=reengagement,
        days_since_last_login=int(days),
        reason=reason,
    )


def _waiting_reason(min_gap: int, since_brief: float) -> str:
    return f"Waiting for {min_gap}-day interval (last brief {int(since_brief)} days ago)"


def fail_open_decision() -> BackoffDecision:
    return BackoffDecision(
        should_send=True,
        is_reengagement=False,
        days_since_last_login=0,
        reason=FAIL_OPEN_REASON,
    )


class EngagementBackoffEngine:
    """
    Resolves backoff decisions against the engagement fact store.

    The store needs ``get_last_activity``, ``get_last_notification`` and
    their ``*_batch`` variants (see EngagementRepository).
    """

    def __init__(self, store, fallback_concurrency: int = DEFAULT_FALLBACK_CONCURRENCY):
        self.store = store
        self.fallback_concurrency = max(1, fallback_concurrency)

    @staticmethod
    def decide(
        days_since_last_login: int | None, days_since_last_notification: float | None
    ) -> BackoffDecision:
        return decide(days_since_last_login, days_since_last_notification)

    @staticmethod
    def decide_from_timestamps(
        last_activity_at: datetime | None,
        last_notification_at: datetime | None,
        now: datetime,
    ) -> BackoffDecision:
        return decide(days_between(last_activity_at, now), days_between(last_notification_at, now))

    async def should_send_daily_brief(self, user_id: str, now: datetime) -> BackoffDecision:
        """Resolve one user with two point reads, failing open on any error."""
        try:
            last_activity = await self.store.get_last_activity(user_id)
            last_notification = await self.store.get_last_notification(user_id)
        except Exception as e:
            logger.warning(
                "Engagement check failed, defaulting to send",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return fail_open_decision()

        decision = self.decide_from_timestamps(last_activity, last_notification, now)
        logger.debug(
            "Engagement decision",
            user_id=user_id,
            should_send=decision.should_send,
            is_reengagement=decision.is_reengagement,
            days_since_last_login=decision.days_since_last_login,
            reason=decision.reason,
        )
        return decision

    async def decide_batch(
        self, user_ids: Iterable[str], now: datetime
    ) -> dict[str, BackoffDecision]:
        """
        Resolve decisions for many users with two bulk reads.

        Falls back to per-user resolution when either bulk read fails.
        """
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        try:
            activity = await self.store.get_last_activity_batch(ids)
            notifications = await self.store.get_last_notification_batch(ids)
        except Exception as e:
            logger.warning(
                "Bulk engagement lookup failed, falling back to per-user checks",
                user_count=len(ids),
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._decide_individually(ids, now)

        return {
            user_id: self.decide_from_timestamps(
                activity.get(user_id), notifications.get(user_id), now
            )
            for user_id in ids
        }

    async def _decide_individually(
        self, user_ids: list[str], now: datetime
    ) -> dict[str, BackoffDecision]:
        semaphore = asyncio.Semaphore(self.fallback_concurrency)

        async def _one(user_id: str) -> BackoffDecision:
            async with semaphore:
                return await self.should_send_daily_brief(user_id, now)

        decisions = await asyncio.gather(*(_one(user_id) for user_id in user_ids))
        return dict(zip(user_ids, decisions))
