"""
Test suite for the tier refresh scheduler.

Run tests:
    pytest tests/infrastructure/scheduler/test_main.py -v
"""

from unittest.mock import MagicMock, patch

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tierkeeper.core.config import settings
from tierkeeper.infrastructure.scheduler.jobs import refresh_user_tier
from tierkeeper.infrastructure.scheduler.main import (
    remove_tier_refresh_job,
    schedule_tier_refresh_job,
    scheduler,
    tier_refresh_job_id,
)

SCHEDULER_PATH = "tierkeeper.infrastructure.scheduler.main.scheduler"


class TestScheduler:
    """Test suite for the scheduler instance."""

    def test_scheduler_is_async_io_scheduler(self):
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_scheduler_has_utc_timezone(self):
        assert str(scheduler.timezone) == "UTC"

    def test_job_id(self):
        assert tier_refresh_job_id("user_1") == "tier_refresh:user_1"


class TestScheduleTierRefreshJob:
    """Test suite for schedule_tier_refresh_job."""

    def test_not_running_schedules_nothing(self):
        with patch(SCHEDULER_PATH) as mock_scheduler:
            mock_scheduler.running = False

            assert schedule_tier_refresh_job("u1", "u1@example.com") is False
            mock_scheduler.add_job.assert_not_called()

    def test_adds_replacing_interval_job(self):
        with patch(SCHEDULER_PATH) as mock_scheduler:
            mock_scheduler.running = True

            assert schedule_tier_refresh_job("u1", "u1@example.com") is True

        args, kwargs = mock_scheduler.add_job.call_args
        assert args[0] is refresh_user_tier
        assert isinstance(kwargs["trigger"], IntervalTrigger)
        assert kwargs["trigger"].interval.total_seconds() == (
            settings.TIER_REFRESH_INTERVAL_SECONDS
        )
        assert kwargs["id"] == "tier_refresh:u1"
        assert kwargs["replace_existing"] is True
        assert kwargs["kwargs"] == {"user_id": "u1", "email": "u1@example.com"}
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True

    def test_custom_interval(self):
        with patch(SCHEDULER_PATH) as mock_scheduler:
            mock_scheduler.running = True
            schedule_tier_refresh_job("u1", "u1@example.com", interval_seconds=5)

        trigger = mock_scheduler.add_job.call_args.kwargs["trigger"]
        assert trigger.interval.total_seconds() == 5


class TestRemoveTierRefreshJob:
    def test_removes_job(self):
        with patch(SCHEDULER_PATH) as mock_scheduler:
            assert remove_tier_refresh_job("u1") is True
            mock_scheduler.remove_job.assert_called_once_with("tier_refresh:u1")

    def test_missing_job(self):
        with patch(SCHEDULER_PATH) as mock_scheduler:
            mock_scheduler.remove_job = MagicMock(side_effect=JobLookupError("x"))
            assert remove_tier_refresh_job("u1") is False
