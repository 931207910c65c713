from datetime import UTC, datetime, timedelta

import pytest

from brief_scheduler.config import Settings
from brief_scheduler.features.daily_brief.context import SchedulerContext
from brief_scheduler.features.daily_brief.domain import (
    ACTIVE_JOB_STATUSES,
    DispatchError,
    EngagementDataError,
    JobHandle,
    RecurrencePreference,
)

# Wednesday
FIXED_NOW = datetime(2025, 10, 1, 8, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakePreferenceStore:
    def __init__(self, preferences: list[RecurrencePreference] | None = None):
        self.preferences = list(preferences or [])
        self.error: Exception | None = None
        self.filter_inactive = True
        self.calls = 0

    async def list_active_preferences(self) -> list[RecurrencePreference]:
        self.calls += 1
        if self.error:
            raise self.error
        if not self.filter_inactive:
            return list(self.preferences)
        return [pref for pref in self.preferences if pref.is_active]


class FakeEngagementStore:
    def __init__(self):
        self.activity: dict[str, datetime | None] = {}
        self.notifications: dict[str, datetime | None] = {}
        self.fail_batch = False
        self.fail_users: set[str] = set()
        self.batch_calls = 0
        self.point_calls = 0

    async def get_last_activity(self, user_id: str) -> datetime | None:
        self.point_calls += 1
        if user_id in self.fail_users:
            raise EngagementDataError("users table unavailable", user_id=user_id)
        return self.activity.get(user_id)

    async def get_last_notification(self, user_id: str) -> datetime | None:
        self.point_calls += 1
        if user_id in self.fail_users:
            raise EngagementDataError("daily_briefs unavailable", user_id=user_id)
        return self.notifications.get(user_id)

    async def get_last_activity_batch(self, user_ids: list[str]) -> dict[str, datetime | None]:
        self.batch_calls += 1
        if self.fail_batch:
            raise EngagementDataError("bulk read failed")
        return {uid: self.activity[uid] for uid in user_ids if uid in self.activity}

    async def get_last_notification_batch(
        self, user_ids: list[str]
    ) -> dict[str, datetime | None]:
        self.batch_calls += 1
        if self.fail_batch:
            raise EngagementDataError("bulk read failed")
        return {uid: self.notifications[uid] for uid in user_ids if uid in self.notifications}


class FakeJobQueue:
    """In-memory queue_jobs; like the database it never stores a dedup key twice."""

    def __init__(self):
        self.jobs: list[JobHandle] = []
        self.fail_users: set[str] = set()
        self.fail_bulk_lookup = False
        self.bulk_lookup_error: Exception | None = None
        self.enqueue_calls = 0
        self.find_calls = 0
        self.bulk_calls = 0
        self.cancel_calls: list[tuple[str, str]] = []

    def add_job(
        self,
        user_id: str,
        scheduled_for: datetime,
        status: str = "pending",
        brief_date: str | None = None,
        dedup_key: str | None = None,
        job_type: str = "generate_daily_brief",
    ) -> JobHandle:
        number = len(self.jobs) + 1
        brief_date = brief_date or scheduled_for.strftime("%Y-%m-%d")
        job = JobHandle(
            id=f"job-{number}",
            queue_job_id=f"queue-{number}",
            user_id=user_id,
            job_type=job_type,
            status=status,
            priority=10,
            scheduled_for=scheduled_for,
            dedup_key=dedup_key,
            payload={"userId": user_id, "briefDate": brief_date},
        )
        self.jobs.append(job)
        return job

    def active_jobs(self, user_id: str | None = None) -> list[JobHandle]:
        return [
            job
            for job in self.jobs
            if job.status in ACTIVE_JOB_STATUSES and (user_id is None or job.user_id == user_id)
        ]

    async def enqueue(
        self, job_type, user_id, payload, *, priority, scheduled_for, dedup_key=None
    ) -> JobHandle:
        self.enqueue_calls += 1
        if user_id in self.fail_users:
            raise DispatchError("queue unavailable", operation="enqueue", user_id=user_id)

        if dedup_key:
            for job in self.jobs:
                if job.dedup_key == dedup_key:
                    return job

        number = len(self.jobs) + 1
        job = JobHandle(
            id=f"job-{number}",
            queue_job_id=f"queue-{number}",
            user_id=user_id,
            job_type=job_type,
            status="pending",
            priority=priority,
            scheduled_for=scheduled_for,
            dedup_key=dedup_key,
            payload=dict(payload),
        )
        self.jobs.append(job)
        return job

    async def find_jobs(self, user_id, job_type, statuses, start, end) -> list[JobHandle]:
        self.find_calls += 1
        if user_id in self.fail_users:
            raise DispatchError("queue unavailable", operation="find_jobs", user_id=user_id)
        return [
            job
            for job in self.jobs
            if job.user_id == user_id
            and job.job_type == job_type
            and job.status in statuses
            and start <= job.scheduled_for <= end
        ]

    async def find_active_jobs_for_users(self, user_ids, job_type) -> list[JobHandle]:
        self.bulk_calls += 1
        if self.fail_bulk_lookup:
            raise self.bulk_lookup_error or DispatchError(
                "bulk lookup failed", operation="find_active_jobs_for_users"
            )
        return [
            job
            for job in self.jobs
            if job.user_id in user_ids
            and job.job_type == job_type
            and job.status in ACTIVE_JOB_STATUSES
        ]

    async def cancel_for_user_and_date(self, user_id: str, brief_date: str) -> int:
        self.cancel_calls.append((user_id, brief_date))
        if user_id in self.fail_users:
            raise DispatchError("queue unavailable", operation="cancel", user_id=user_id)
        cancelled = 0
        for job in self.jobs:
            if (
                job.user_id == user_id
                and job.status in ACTIVE_JOB_STATUSES
                and job.payload.get("briefDate") == brief_date
            ):
                job.status = "cancelled"
                cancelled += 1
        return cancelled


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.unavailable = False
        self.released: list[str] = []

    async def acquire_lock(self, key: str, token: str, ttl_s: int) -> bool:
        if self.unavailable:
            raise ConnectionError("redis down")
        if key in self.store:
            return False
        self.store[key] = token
        return True

    async def release_lock(self, key: str, token: str) -> bool:
        if self.store.get(key) == token:
            del self.store[key]
            self.released.append(key)
            return True
        return False


def make_settings(**overrides) -> Settings:
    return Settings(**overrides)


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def preference_store():
    return FakePreferenceStore()


@pytest.fixture
def engagement_store():
    return FakeEngagementStore()


@pytest.fixture
def job_queue():
    return FakeJobQueue()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def make_context(preference_store, engagement_store, job_queue, clock):
    def _make(lock_client=None, **setting_overrides) -> SchedulerContext:
        return SchedulerContext(
            preferences=preference_store,
            engagement=engagement_store,
            queue=job_queue,
            settings=make_settings(**setting_overrides),
            clock=clock,
            lock_client=lock_client,
        )

    return _make
