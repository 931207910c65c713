"""
Tests for the Postgres-backed stores, with the query helpers patched out.
"""

from datetime import UTC, datetime, time
from unittest.mock import AsyncMock, patch

import pytest

from brief_scheduler.db.helpers import DatabaseError
from brief_scheduler.features.daily_brief.domain import DispatchError, EngagementDataError
from brief_scheduler.features.daily_brief.repository import (
    EngagementRepository,
    PreferenceRepository,
    PreferenceRepositoryError,
    QueueRepository,
)

PREF_MODULE = "brief_scheduler.features.daily_brief.repository.preference_repository"
ENGAGEMENT_MODULE = "brief_scheduler.features.daily_brief.repository.engagement_repository"
QUEUE_MODULE = "brief_scheduler.features.daily_brief.repository.queue_repository"

SCHEDULED = datetime(2025, 10, 1, 9, 0, tzinfo=UTC)


def queue_row(**overrides):
    row = {
        "id": "11111111-1111-4111-8111-111111111111",
        "queue_job_id": "22222222-2222-4222-8222-222222222222",
        "user_id": "user-1",
        "job_type": "generate_daily_brief",
        "status": "pending",
        "priority": 10,
        "scheduled_for": SCHEDULED,
        "dedup_key": "brief:user-1:2025-10-01",
        "metadata": {"userId": "user-1", "briefDate": "2025-10-01"},
    }
    row.update(overrides)
    return row


class TestPreferenceRepository:
    @pytest.mark.asyncio
    async def test_list_active_preferences(self):
        rows = [
            {
                "user_id": "user-1",
                "frequency": "weekly",
                "time_of_day": time(9, 0),
                "timezone": "Europe/Berlin",
                "day_of_week": 1,
                "is_active": True,
            }
        ]
        with patch(f"{PREF_MODULE}.fetch_all", AsyncMock(return_value=rows)):
            preferences = await PreferenceRepository.list_active_preferences()

        assert len(preferences) == 1
        assert preferences[0].time_of_day == "09:00:00"
        assert preferences[0].day_of_week == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self):
        mock_fetch = AsyncMock(side_effect=DatabaseError("syntax error", recoverable=False))
        with patch(f"{PREF_MODULE}.fetch_all", mock_fetch):
            with pytest.raises(PreferenceRepositoryError):
                await PreferenceRepository.list_active_preferences()

        assert mock_fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        mock_fetch = AsyncMock(side_effect=[DatabaseError("connection reset"), []])
        with (
            patch(f"{PREF_MODULE}.fetch_all", mock_fetch),
            patch("brief_scheduler.db.helpers.asyncio.sleep", AsyncMock()),
        ):
            preferences = await PreferenceRepository.list_active_preferences()

        assert preferences == []
        assert mock_fetch.await_count == 2


class TestEngagementRepository:
    @pytest.mark.asyncio
    async def test_last_activity(self):
        seen = datetime(2025, 9, 28, tzinfo=UTC)
        with patch(
            f"{ENGAGEMENT_MODULE}.fetch_one", AsyncMock(return_value={"last_visit": seen})
        ):
            assert await EngagementRepository.get_last_activity("user-1") == seen

    @pytest.mark.asyncio
    async def test_last_notification_missing(self):
        with patch(f"{ENGAGEMENT_MODULE}.fetch_one", AsyncMock(return_value=None)):
            assert await EngagementRepository.get_last_notification("user-1") is None

    @pytest.mark.asyncio
    async def test_batch_keys_by_user_id(self):
        seen = datetime(2025, 9, 28, tzinfo=UTC)
        rows = [{"user_id": "user-1", "generation_completed_at": seen}]
        with patch(f"{ENGAGEMENT_MODULE}.fetch_all", AsyncMock(return_value=rows)):
            result = await EngagementRepository.get_last_notification_batch(["user-1", "user-2"])

        assert result == {"user-1": seen}

    @pytest.mark.asyncio
    async def test_batch_empty_skips_query(self):
        mock_fetch = AsyncMock()
        with patch(f"{ENGAGEMENT_MODULE}.fetch_all", mock_fetch):
            assert await EngagementRepository.get_last_activity_batch([]) == {}

        mock_fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_errors_become_engagement_errors(self):
        with patch(
            f"{ENGAGEMENT_MODULE}.fetch_one", AsyncMock(side_effect=DatabaseError("down"))
        ):
            with pytest.raises(EngagementDataError) as exc_info:
                await EngagementRepository.get_last_activity("user-1")

        assert exc_info.value.user_id == "user-1"


class TestQueueRepository:
    @pytest.mark.asyncio
    async def test_enqueue_returns_handle(self):
        mock_fetch = AsyncMock(side_effect=[{"job_id": queue_row()["id"]}, queue_row()])
        with patch(f"{QUEUE_MODULE}.fetch_one", mock_fetch):
            handle = await QueueRepository.enqueue(
                "generate_daily_brief",
                "user-1",
                {"userId": "user-1", "briefDate": "2025-10-01"},
                priority=10,
                scheduled_for=SCHEDULED,
                dedup_key="brief:user-1:2025-10-01",
            )

        assert handle.id == queue_row()["id"]
        assert handle.payload["briefDate"] == "2025-10-01"
        first_query, first_params = mock_fetch.await_args_list[0].args
        assert "add_queue_job" in first_query
        assert first_params[0] == "user-1"
        assert first_params[-1] == "brief:user-1:2025-10-01"

    @pytest.mark.asyncio
    async def test_enqueue_without_job_id(self):
        with patch(f"{QUEUE_MODULE}.fetch_one", AsyncMock(return_value={"job_id": None})):
            with pytest.raises(DispatchError):
                await QueueRepository.enqueue(
                    "generate_daily_brief",
                    "user-1",
                    {},
                    priority=10,
                    scheduled_for=SCHEDULED,
                )

    @pytest.mark.asyncio
    async def test_find_jobs(self):
        with patch(f"{QUEUE_MODULE}.fetch_all", AsyncMock(return_value=[queue_row()])):
            jobs = await QueueRepository.find_jobs(
                "user-1",
                "generate_daily_brief",
                ("pending", "processing"),
                SCHEDULED,
                SCHEDULED,
            )

        assert [job.status for job in jobs] == ["pending"]

    @pytest.mark.asyncio
    async def test_cancel_returns_count(self):
        with patch(
            f"{QUEUE_MODULE}.fetch_one", AsyncMock(return_value={"cancelled_count": 2})
        ):
            assert await QueueRepository.cancel_for_user_and_date("user-1", "2025-10-01") == 2

    @pytest.mark.asyncio
    async def test_database_errors_become_dispatch_errors(self):
        with patch(
            f"{QUEUE_MODULE}.fetch_all", AsyncMock(side_effect=DatabaseError("down"))
        ):
            with pytest.raises(DispatchError):
                await QueueRepository.find_active_jobs_for_users(["user-1"], "generate_daily_brief")
