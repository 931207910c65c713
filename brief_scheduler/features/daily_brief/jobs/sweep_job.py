"""
Daily brief scheduling sweep.

Runs as a background job: every interval it loads all active brief
preferences, applies the engagement backoff gate when enabled, computes
each user's next run and queues the ones falling inside the lookahead
window. One bad preference or one failed enqueue never stops the rest of
the sweep, and a failed sweep never stops the scheduler loop.
"""

import asyncio
import time
import uuid
from datetime import UTC, datetime, timedelta

from brief_scheduler.features.daily_brief.context import SchedulerContext, build_default_context
from brief_scheduler.features.daily_brief.domain import (
    BackoffDecision,
    DispatchReport,
    PreferenceValidationError,
    RecurrencePreference,
    ScheduledJobIntent,
    SchedulingSweepError,
)
from brief_scheduler.features.daily_brief.services.backoff import EngagementBackoffEngine
from brief_scheduler.features.daily_brief.services.dispatcher import JobDispatcher
from brief_scheduler.features.daily_brief.services.next_run import compute_next_run
from brief_scheduler.infrastructure.observability.logging import get_logger, sweep_log_context

logger = get_logger(__name__)

JOB_NAME = "daily_brief_sweep"


class SweepMetrics:
    """Metrics tracking for one scheduling sweep."""

    def __init__(self):
        self.reset()

    def reset(self, start_time: datetime | None = None):
        """Reset all metrics for new job run."""
        self.start_time = start_time or datetime.now(UTC)
        self._started = time.monotonic()
        self.preferences_loaded = 0
        self.missing_user_id = 0
        self.inactive_skipped = 0
        self.skipped_by_backoff = 0
        self.invalid_preferences = 0
        self.not_due = 0
        self.due = 0
        self.queued = 0
        self.duplicates = 0
        self.dispatch_failures = 0
        self.processing_errors = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_skipped_by_backoff(self, user_id: str, decision: BackoffDecision):
        self.skipped_by_backoff += 1
        logger.info(
            "Skipping brief due to engagement backoff",
            user_id=user_id,
            days_since_last_login=decision.days_since_last_login,
            reason=decision.reason,
            job_run=JOB_NAME,
        )

    def record_invalid(self, user_id: str, error: PreferenceValidationError):
        self.invalid_preferences += 1
        self.errors.append(
            {
                "user_id": user_id,
                "error": str(error),
                "error_type": "validation",
                "field": error.field,
            }
        )

    def record_processing_error(self, user_id: str | None, error: str):
        self.processing_errors += 1
        self.errors.append({"user_id": user_id, "error": error, "error_type": "processing"})
        logger.error(
            "Daily brief sweep processing error", user_id=user_id, error=error, job_run=JOB_NAME
        )

    def record_dispatch(self, report: DispatchReport):
        self.queued += len(report.queued)
        self.duplicates += len(report.duplicates)
        self.dispatch_failures += len(report.failures)
        for user_id, error in report.failures.items():
            self.errors.append({"user_id": user_id, "error": error, "error_type": "dispatch"})

    def finalize(self):
        """Finalize metrics and calculate totals."""
        self.total_duration_seconds = time.monotonic() - self._started

    def to_dict(self) -> dict:
        """Convert metrics to dictionary for logging."""
        return {
            "job_run": JOB_NAME,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "preferences_loaded": self.preferences_loaded,
            "missing_user_id": self.missing_user_id,
            "inactive_skipped": self.inactive_skipped,
            "skipped_by_backoff": self.skipped_by_backoff,
            "invalid_preferences": self.invalid_preferences,
            "not_due": self.not_due,
            "due": self.due,
            "queued": self.queued,
            "duplicates": self.duplicates,
            "dispatch_failures": self.dispatch_failures,
            "processing_errors": self.processing_errors,
            "errors_count": len(self.errors),
        }


class DailyBriefSweepJob:
    """
    Periodic job that turns recurrence preferences into queued briefs.

    Only one sweep runs at a time: ``is_running`` guards this process and,
    when SWEEP_LOCK_ENABLED is set, a Redis lease guards other replicas.
    """

    def __init__(self, context: SchedulerContext):
        self.context = context
        self.settings = context.settings
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = SweepMetrics()
        self.backoff = EngagementBackoffEngine(
            context.engagement, fallback_concurrency=self.settings.SCHEDULER_MAX_CONCURRENCY
        )
        self.dispatcher = JobDispatcher(
            context.queue,
            tolerance_seconds=self.settings.dedup_tolerance_seconds(),
            immediate_threshold_seconds=self.settings.IMMEDIATE_THRESHOLD_SECONDS,
            max_concurrency=self.settings.SCHEDULER_MAX_CONCURRENCY,
        )

        if self.settings.DEDUP_TOLERANCE_MINUTES < self.settings.SCHEDULER_LOOKAHEAD_MINUTES:
            logger.debug(
                "Dedup tolerance is narrower than the lookahead window",
                tolerance_minutes=self.settings.DEDUP_TOLERANCE_MINUTES,
                lookahead_minutes=self.settings.SCHEDULER_LOOKAHEAD_MINUTES,
            )

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Run a single scheduling sweep.

        Args:
            now: reference instant; defaults to the context clock

        Returns:
            Dict: sweep metrics, or ``{"skipped": True, ...}`` when another
            sweep holds the guard

        Raises:
            SchedulingSweepError: the sweep could not run (e.g. preferences
            could not be loaded)
        """
        with sweep_log_context(JOB_NAME, uuid.uuid4().hex[:12]):
            return await self._run_once(now)

    async def _run_once(self, now: datetime | None) -> dict:
        if self.is_running:
            logger.warning("Daily brief sweep already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        lock_token = None
        try:
            lock_token = await self._acquire_lock()
            if lock_token is False:
                logger.info("Daily brief sweep lock held elsewhere, skipping this iteration")
                return {"skipped": True, "reason": "lock_held"}

            now = now or self.context.clock()
            now = now.replace(tzinfo=UTC) if now.tzinfo is None else now.astimezone(UTC)
            self.job_metrics.reset(start_time=now)

            logger.info(
                "Starting daily brief sweep",
                now=now.isoformat(),
                backoff_enabled=self.settings.ENGAGEMENT_BACKOFF_ENABLED,
                lookahead_minutes=self.settings.SCHEDULER_LOOKAHEAD_MINUTES,
            )

            preferences = await self._load_preferences()
            self.job_metrics.preferences_loaded = len(preferences)

            if not preferences:
                logger.info("No active brief preferences found")
            else:
                decisions = await self._resolve_backoff(preferences, now)
                intents = self._collect_due_intents(preferences, decisions, now)
                self.job_metrics.due = len(intents)

                if intents:
                    report = await self.dispatcher.dispatch_batch(intents)
                    self.job_metrics.record_dispatch(report)
                else:
                    logger.info("No briefs due in this window")

            self.job_metrics.finalize()
            self.last_run_time = self.context.clock()

            metrics = self.job_metrics.to_dict()
            logger.info("Daily brief sweep completed", **metrics)
            return metrics

        except SchedulingSweepError:
            self.job_metrics.finalize()
            raise
        except Exception as e:
            logger.error("Daily brief sweep failed", error=str(e), error_type=type(e).__name__)
            self.job_metrics.finalize()
            raise SchedulingSweepError(
                f"Daily brief sweep failed: {e}", operation="run_once"
            ) from e

        finally:
            if lock_token:
                await self.context.lock_client.release_lock(
                    self.settings.SWEEP_LOCK_KEY, lock_token
                )
            self.is_running = False

    async def _acquire_lock(self) -> str | bool | None:
        """
        Take the cross-replica lease.

        Returns the lease token, False when another replica holds it, or
        None when no lock is configured or the lock service is unreachable.
        """
        client = self.context.lock_client
        if not self.settings.SWEEP_LOCK_ENABLED or client is None:
            return None

        token = uuid.uuid4().hex
        try:
            acquired = await client.acquire_lock(
                self.settings.SWEEP_LOCK_KEY, token, self.settings.SWEEP_LOCK_TTL_SECONDS
            )
        except Exception as e:
            # An unreachable lock service must not stop briefs from going out
            logger.warning(
                "Sweep lock unavailable, running without it",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        return token if acquired else False

    async def _load_preferences(self) -> list[RecurrencePreference]:
        try:
            return await self.context.preferences.list_active_preferences()
        except Exception as e:
            logger.error("Failed to load brief preferences", error=str(e))
            raise SchedulingSweepError(
                f"Failed to load brief preferences: {e}",
                operation="load_preferences",
                recoverable=getattr(e, "recoverable", True),
            ) from e

    async def _resolve_backoff(
        self, preferences: list[RecurrencePreference], now: datetime
    ) -> dict[str, BackoffDecision]:
        if not self.settings.ENGAGEMENT_BACKOFF_ENABLED:
            return {}

        user_ids = [pref.user_id for pref in preferences if pref.user_id]
        return await self.backoff.decide_batch(user_ids, now)

    def _collect_due_intents(
        self,
        preferences: list[RecurrencePreference],
        decisions: dict[str, BackoffDecision],
        now: datetime,
    ) -> list[ScheduledJobIntent]:
        intents: list[ScheduledJobIntent] = []
        for preference in preferences:
            try:
                intent = self._evaluate(preference, decisions, now)
            except Exception as e:
                self.job_metrics.record_processing_error(
                    preference.user_id, f"{type(e).__name__}: {e}"
                )
                continue
            if intent is not None:
                intents.append(intent)
        return intents

    def _evaluate(
        self,
        preference: RecurrencePreference,
        decisions: dict[str, BackoffDecision],
        now: datetime,
    ) -> ScheduledJobIntent | None:
        user_id = preference.user_id
        if not user_id:
            self.job_metrics.missing_user_id += 1
            logger.warning("Skipping brief preference without user_id")
            return None

        if not preference.is_active:
            self.job_metrics.inactive_skipped += 1
            logger.debug("Skipping inactive brief preference", user_id=user_id)
            return None

        decision = decisions.get(user_id) if self.settings.ENGAGEMENT_BACKOFF_ENABLED else None
        if decision is not None and not decision.should_send:
            self.job_metrics.record_skipped_by_backoff(user_id, decision)
            return None

        next_run = compute_next_run(preference, now)
        if isinstance(next_run, PreferenceValidationError):
            self.job_metrics.record_invalid(user_id, next_run)
            return None

        window_end = now + timedelta(seconds=self.settings.lookahead_seconds())
        if not now <= next_run < window_end:
            self.job_metrics.not_due += 1
            return None

        logger.debug(
            "Brief due",
            user_id=user_id,
            next_run=next_run.isoformat(),
            timezone=preference.effective_timezone,
            is_reengagement=decision.is_reengagement if decision else False,
        )
        return self.dispatcher.build_intent(
            user_id,
            next_run,
            preference.effective_timezone,
            now,
            engagement=decision,
        )

    def get_job_status(self) -> dict:
        """
        Get current job status and metrics.

        Returns:
            Dict: Current job status information
        """
        return {
            "job_name": JOB_NAME,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": self.settings.SCHEDULER_INTERVAL_MINUTES,
            "lookahead_minutes": self.settings.SCHEDULER_LOOKAHEAD_MINUTES,
            "dedup_tolerance_minutes": self.settings.DEDUP_TOLERANCE_MINUTES,
            "backoff_enabled": self.settings.ENGAGEMENT_BACKOFF_ENABLED,
            "lock_enabled": self.settings.SWEEP_LOCK_ENABLED,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }

    def health_check(self) -> dict:
        """
        Health check for the sweep job.

        Overdue means no completed sweep for twice the interval.
        """
        try:
            now = self.context.clock()
            overdue_threshold = timedelta(minutes=self.settings.SCHEDULER_INTERVAL_MINUTES * 2)
            is_overdue = (
                self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold
            )

            health_status = {
                "healthy": not is_overdue,
                "service": "daily_brief_sweep_job",
                "is_running": self.is_running,
                "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
                "is_overdue": is_overdue,
                "configuration": {
                    "interval_minutes": self.settings.SCHEDULER_INTERVAL_MINUTES,
                    "lookahead_minutes": self.settings.SCHEDULER_LOOKAHEAD_MINUTES,
                    "max_concurrency": self.settings.SCHEDULER_MAX_CONCURRENCY,
                },
            }

            if is_overdue:
                health_status["warning"] = (
                    f"Job overdue by {(now - self.last_run_time).total_seconds() / 60:.1f} minutes"
                )

            return health_status

        except Exception as e:
            logger.error("Daily brief sweep health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "daily_brief_sweep_job",
                "error": str(e),
            }


_sweep_job: DailyBriefSweepJob | None = None


def get_daily_brief_sweep_job() -> DailyBriefSweepJob:
    """Process-wide sweep job wired to the production stores."""
    global _sweep_job
    if _sweep_job is None:
        _sweep_job = DailyBriefSweepJob(build_default_context())
    return _sweep_job


# Convenience functions for easy import and background job scheduling
async def run_daily_brief_sweep() -> dict:
    """Run a single scheduling sweep."""
    return await get_daily_brief_sweep_job().run_once()


def get_daily_brief_sweep_status() -> dict:
    return get_daily_brief_sweep_job().get_job_status()


def daily_brief_sweep_health() -> dict:
    return get_daily_brief_sweep_job().health_check()


def seconds_until_next_interval(now: datetime, interval_minutes: int) -> float:
    """Seconds from ``now`` to the next multiple of the interval (top of the hour for 60)."""
    interval = interval_minutes * 60
    remainder = now.timestamp() % interval
    return interval - remainder


async def start_daily_brief_scheduler(job: DailyBriefSweepJob | None = None) -> None:
    """
    Start the daily brief scheduler loop.

    Runs one sweep shortly after startup, then one at the start of every
    interval. Sweep failures are logged and retried after a fixed pause.
    """
    job = job or get_daily_brief_sweep_job()
    app_settings = job.settings

    logger.info(
        "Starting daily brief scheduler",
        interval_minutes=app_settings.SCHEDULER_INTERVAL_MINUTES,
        startup_delay_seconds=app_settings.SCHEDULER_STARTUP_DELAY_SECONDS,
        backoff_enabled=app_settings.ENGAGEMENT_BACKOFF_ENABLED,
    )

    await asyncio.sleep(app_settings.SCHEDULER_STARTUP_DELAY_SECONDS)

    while True:
        try:
            metrics = await job.run_once()

            if not metrics.get("skipped", False):
                logger.info("Daily brief scheduler cycle completed", **metrics)

            delay = seconds_until_next_interval(
                job.context.clock(), app_settings.SCHEDULER_INTERVAL_MINUTES
            )
            await asyncio.sleep(delay)

        except asyncio.CancelledError:
            logger.info("Daily brief scheduler stopped")
            raise
        except Exception as e:
            logger.error(
                "Error in daily brief scheduler", error=str(e), error_type=type(e).__name__
            )
            # Wait a bit before retrying to avoid tight error loops
            await asyncio.sleep(app_settings.SCHEDULER_ERROR_RETRY_SECONDS)
