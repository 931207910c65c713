"""
Dedup-and-enqueue wrapper over the job queue.

Scheduled briefs are skipped when the user already has a pending or
processing brief job within the dedup tolerance of the new run time.
Immediate briefs (due in under a minute) take the forced path instead:
cancel whatever is queued for that user and brief date, then enqueue with a
dedup key that cannot collide with the cancelled rows.
"""

import asyncio
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import Any

from brief_scheduler.features.daily_brief.domain import (
    ACTIVE_JOB_STATUSES,
    DAILY_BRIEF_JOB_TYPE,
    PRIORITY_IMMEDIATE,
    PRIORITY_SCHEDULED,
    BackoffDecision,
    DispatchReport,
    JobHandle,
    ScheduledJobIntent,
)
from brief_scheduler.features.daily_brief.services.next_run import resolve_timezone
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TOLERANCE_SECONDS = 30 * 60
DEFAULT_IMMEDIATE_THRESHOLD_SECONDS = 60
DEFAULT_MAX_CONCURRENCY = 10


def brief_dedup_key(user_id: str, brief_date: str) -> str:
    return f"brief:{user_id}:{brief_date}"


def forced_dedup_key(user_id: str, brief_date: str, now: datetime) -> str:
    epoch_ms = int(now.timestamp() * 1000)
    return f"{brief_dedup_key(user_id, brief_date)}:{epoch_ms}"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


class JobDispatcher:
    """
    Places brief generation jobs on the queue without double-booking users.

    The queue needs ``enqueue``, ``find_jobs``, ``find_active_jobs_for_users``
    and ``cancel_for_user_and_date`` (see QueueRepository).
    """

    def __init__(
        self,
        queue,
        tolerance_seconds: float = DEFAULT_TOLERANCE_SECONDS,
        immediate_threshold_seconds: float = DEFAULT_IMMEDIATE_THRESHOLD_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        job_type: str = DAILY_BRIEF_JOB_TYPE,
    ):
        self.queue = queue
        self.tolerance = timedelta(seconds=tolerance_seconds)
        self.immediate_threshold = timedelta(seconds=immediate_threshold_seconds)
        self.max_concurrency = max(1, max_concurrency)
        self.job_type = job_type

    def build_intent(
        self,
        user_id: str,
        scheduled_for: datetime,
        timezone: str,
        now: datetime,
        engagement: BackoffDecision | None = None,
        brief_date: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> ScheduledJobIntent:
        """
        Turn a computed run time into a queue intent.

        The brief date is the local calendar date of ``scheduled_for`` in the
        user's timezone unless one is given explicitly.

        Raises:
            PreferenceValidationError: unknown timezone
        """
        scheduled_for = _as_utc(scheduled_for)
        now = _as_utc(now)
        tz = resolve_timezone(timezone)

        if brief_date is None:
            brief_date = scheduled_for.astimezone(tz).strftime("%Y-%m-%d")

        is_immediate = scheduled_for - now < self.immediate_threshold
        priority = PRIORITY_IMMEDIATE if is_immediate else PRIORITY_SCHEDULED
        dedup_key = (
            forced_dedup_key(user_id, brief_date, now)
            if is_immediate
            else brief_dedup_key(user_id, brief_date)
        )

        job_options = dict(options or {})
        if engagement is not None:
            job_options.update(engagement.engagement_metadata())

        payload: dict[str, Any] = {
            "userId": user_id,
            "briefDate": brief_date,
            "timezone": timezone,
        }
        if job_options:
            payload["options"] = job_options

        return ScheduledJobIntent(
            job_type=self.job_type,
            user_id=user_id,
            brief_date=brief_date,
            timezone=timezone,
            scheduled_for=scheduled_for,
            priority=priority,
            dedup_key=dedup_key,
            payload=payload,
        )

    async def dispatch(self, intent: ScheduledJobIntent) -> JobHandle | None:
        """
        Enqueue one intent.

        Returns:
            The queued job, or None when an active job already covers it.

        Raises:
            DispatchError: the queue failed
        """
        if intent.is_immediate:
            return await self._dispatch_forced(intent)

        existing = await self.queue.find_jobs(
            intent.user_id,
            intent.job_type,
            ACTIVE_JOB_STATUSES,
            intent.scheduled_for - self.tolerance,
            intent.scheduled_for + self.tolerance,
        )
        if existing:
            logger.info(
                "Brief already queued, skipping",
                user_id=intent.user_id,
                brief_date=intent.brief_date,
                existing_job_id=existing[0].id,
                existing_scheduled_for=existing[0].scheduled_for.isoformat(),
            )
            return None

        return await self._enqueue(intent)

    async def dispatch_immediate(
        self,
        user_id: str,
        now: datetime,
        timezone: str,
        brief_date: str | None = None,
        force_regenerate: bool = False,
    ) -> JobHandle:
        """
        Queue a brief to run right away, replacing anything already queued
        for the same brief date.
        """
        options = {"forceRegenerate": True} if force_regenerate else None
        intent = self.build_intent(
            user_id, now, timezone, now, brief_date=brief_date, options=options
        )
        return await self._dispatch_forced(intent)

    async def dispatch_batch(self, intents: list[ScheduledJobIntent]) -> DispatchReport:
        """
        Dispatch many intents with one dedup lookup for all scheduled ones.

        A failing intent is recorded in the report and never stops the rest.
        When the bulk lookup itself fails every scheduled intent falls back
        to its own lookup.
        """
        report = DispatchReport()
        if not intents:
            return report

        scheduled = [intent for intent in intents if not intent.is_immediate]
        bulk_checked = False
        to_enqueue: list[ScheduledJobIntent] = []

        if scheduled:
            try:
                active = await self.queue.find_active_jobs_for_users(
                    list(dict.fromkeys(intent.user_id for intent in scheduled)), self.job_type
                )
                bulk_checked = True
            except Exception as e:
                logger.warning(
                    "Bulk dedup lookup failed, falling back to per-user lookups",
                    intent_count=len(scheduled),
                    error=str(e),
                )

            if bulk_checked:
                by_user: dict[str, list[JobHandle]] = defaultdict(list)
                for job in active:
                    by_user[job.user_id].append(job)

                for intent in scheduled:
                    if self._is_covered(intent, by_user.get(intent.user_id, [])):
                        logger.info(
                            "Brief already queued, skipping",
                            user_id=intent.user_id,
                            brief_date=intent.brief_date,
                        )
                        report.duplicates.append(intent.user_id)
                    else:
                        to_enqueue.append(intent)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(intent: ScheduledJobIntent) -> None:
            async with semaphore:
                try:
                    if intent.is_immediate:
                        handle = await self._dispatch_forced(intent)
                    elif bulk_checked:
                        handle = await self._enqueue(intent)
                    else:
                        handle = await self.dispatch(intent)
                except Exception as e:
                    logger.error(
                        "Failed to queue brief",
                        user_id=intent.user_id,
                        brief_date=intent.brief_date,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    report.failures[intent.user_id] = str(e)
                    return

                if handle is None:
                    report.duplicates.append(intent.user_id)
                else:
                    report.queued.append(handle)

        pending = [intent for intent in intents if intent.is_immediate]
        pending.extend(to_enqueue if bulk_checked else scheduled)
        await asyncio.gather(*(_one(intent) for intent in pending))

        logger.info(
            "Dispatched brief batch",
            intents=len(intents),
            queued=len(report.queued),
            duplicates=len(report.duplicates),
            failures=len(report.failures),
        )
        return report

    def _is_covered(self, intent: ScheduledJobIntent, jobs: list[JobHandle]) -> bool:
        for job in jobs:
            if job.status not in ACTIVE_JOB_STATUSES:
                continue
            if abs(_as_utc(job.scheduled_for) - intent.scheduled_for) <= self.tolerance:
                return True
        return False

    async def _dispatch_forced(self, intent: ScheduledJobIntent) -> JobHandle:
        cancelled = await self.queue.cancel_for_user_and_date(intent.user_id, intent.brief_date)
        if cancelled:
            logger.info(
                "Cancelled existing brief jobs before immediate run",
                user_id=intent.user_id,
                brief_date=intent.brief_date,
                cancelled=cancelled,
            )
        return await self._enqueue(intent)

    async def _enqueue(self, intent: ScheduledJobIntent) -> JobHandle:
        handle = await self.queue.enqueue(
            intent.job_type,
            intent.user_id,
            intent.payload,
            priority=intent.priority,
            scheduled_for=intent.scheduled_for,
            dedup_key=intent.dedup_key,
        )
        logger.info(
            "Queued brief generation",
            user_id=intent.user_id,
            brief_date=intent.brief_date,
            job_id=handle.id,
            priority=intent.priority,
            immediate=intent.is_immediate,
            scheduled_for=intent.scheduled_for.isoformat(),
        )
        return handle
