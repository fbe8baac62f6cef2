"""
Test suite for scheduler jobs.

Run tests:
    pytest tests/infrastructure/scheduler/test_jobs.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tierkeeper.apps.tiers.schemas import TierState
from tierkeeper.core.enums import RefreshTrigger
from tierkeeper.infrastructure.scheduler.jobs import refresh_user_tier


class TestRefreshUserTierJob:
    """Test suite for the interval tier refresh job."""

    @pytest.mark.asyncio
    async def test_runs_interval_refresh(self):
        reconciler = MagicMock()
        reconciler.refresh = AsyncMock(return_value=TierState(sequence=3))

        with patch(
            "tierkeeper.apps.tiers.dependencies.get_reconciler",
            return_value=reconciler,
        ):
            await refresh_user_tier("u1", "u1@example.com")

        reconciler.refresh.assert_awaited_once_with(
            "u1", "u1@example.com", trigger=RefreshTrigger.INTERVAL
        )

    @pytest.mark.asyncio
    async def test_uses_real_reconciler(self, reconciler, processor, profile_cache):
        with patch(
            "tierkeeper.apps.tiers.dependencies.get_reconciler",
            return_value=reconciler,
        ):
            await refresh_user_tier("u1", "u1@example.com")

        processor.get_status_for_contact.assert_awaited_once_with("u1@example.com")
        assert await profile_cache.read("u1") is not None
