"""
Test suite for the usage router.

Run tests:
    pytest tests/apps/tiers/routers/test_usage.py -v
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from tierkeeper.core.enums import RefreshTrigger, UserTier
from tierkeeper.core.exceptions.types import StoreUnavailableException


class TestCanCreate:
    """Test suite for GET /usage/{kind}/can-create."""

    @pytest.mark.asyncio
    async def test_free_user_at_limit(self, client, auth_headers, profile_cache, user):
        await profile_cache.write(user.id, {"courses_used": 5, "tasks_used": 2})

        courses = await client.get("/usage/courses/can-create", headers=auth_headers)
        tasks = await client.get("/usage/tasks/can-create", headers=auth_headers)

        assert courses.status_code == 200
        assert courses.json() == {
            "kind": "courses",
            "allowed": False,
            "outcome": "quota_exceeded",
            "used": 5,
            "limit": 5,
        }
        assert tasks.json()["allowed"] is True

    @pytest.mark.asyncio
    async def test_premium_user_unlimited(
        self, client, auth_headers, profile_cache, user
    ):
        await profile_cache.write(
            user.id,
            {
                "tier": UserTier.PREMIUM,
                "subscription_end_date": datetime(2026, 1, 1, tzinfo=timezone.utc),
                "notes_used": 50,
            },
        )

        response = await client.get("/usage/notes/can-create", headers=auth_headers)

        data = response.json()
        assert data["allowed"] is True
        assert data["outcome"] == "admitted"
        assert data["limit"] is None

    @pytest.mark.asyncio
    async def test_store_down_denies(self, client, auth_headers, profile_cache, user):
        await profile_cache.write(user.id, {"courses_used": 5})
        down = AsyncMock(side_effect=StoreUnavailableException())

        with patch.object(profile_cache, "read", down), patch.object(
            profile_cache, "ensure", down
        ):
            response = await client.get(
                "/usage/courses/can-create", headers=auth_headers
            )

        assert response.status_code == 200
        assert response.json() == {
            "kind": "courses",
            "allowed": False,
            "outcome": "unknown_state",
            "used": None,
            "limit": None,
        }

    @pytest.mark.asyncio
    async def test_unknown_kind(self, client, auth_headers):
        response = await client.get("/usage/videos/can-create", headers=auth_headers)
        assert response.status_code == 422


class TestCreationHooks:
    """Test suite for the creation success/error hooks."""

    @pytest.mark.asyncio
    async def test_created_schedules_refresh(
        self, client, auth_headers, reconciler, user
    ):
        with patch.object(reconciler, "schedule_refresh") as mock_schedule:
            response = await client.post("/usage/tasks/created", headers=auth_headers)

        assert response.status_code == 202
        assert response.json() == {"status": "refresh_scheduled"}
        mock_schedule.assert_called_once_with(
            user.id, user.email, RefreshTrigger.EXPLICIT
        )

    @pytest.mark.asyncio
    async def test_quota_error_opens_prompt(
        self, client, auth_headers, reconciler, user
    ):
        with patch.object(reconciler, "schedule_refresh") as mock_schedule:
            response = await client.post(
                "/usage/notes/creation-error",
                json={"message": "Usage limit exceeded. Upgrade to premium."},
                headers=auth_headers,
            )

        assert response.json() == {"handled": True, "kind": "notes"}
        mock_schedule.assert_called_once()

        prompt = await client.get("/usage/upgrade-prompt", headers=auth_headers)
        assert prompt.json() == {"open": True, "kind": "notes"}

        dismissed = await client.delete("/usage/upgrade-prompt", headers=auth_headers)
        assert dismissed.json() == {"open": False, "kind": None}

        prompt = await client.get("/usage/upgrade-prompt", headers=auth_headers)
        assert prompt.json()["open"] is False

    @pytest.mark.asyncio
    async def test_other_error_not_handled(
        self, client, auth_headers, reconciler, quota, user
    ):
        with patch.object(reconciler, "schedule_refresh") as mock_schedule:
            response = await client.post(
                "/usage/courses/creation-error",
                json={"message": "duplicate key value violates unique constraint"},
                headers=auth_headers,
            )

        assert response.json() == {"handled": False, "kind": "courses"}
        mock_schedule.assert_not_called()
        assert quota.upgrade_prompt(user.id) is None

    @pytest.mark.asyncio
    async def test_error_refresh_updates_cache(
        self, client, auth_headers, reconciler, profile_cache, processor, user
    ):
        response = await client.post(
            "/usage/courses/creation-error",
            json={"message": "usage limit"},
            headers=auth_headers,
        )
        assert response.json()["handled"] is True

        for task in list(reconciler._tasks):
            await task

        processor.get_status_for_contact.assert_awaited_once_with(user.email)
        assert await profile_cache.read(user.id) is not None
