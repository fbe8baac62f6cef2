"""
Test suite for the profile cache accessor.

Run tests:
    pytest tests/apps/tiers/services/test_profile_cache.py -v
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from tierkeeper.apps.tiers.schemas import TierSnapshot
from tierkeeper.apps.tiers.services.profile_cache import ProfileCache
from tierkeeper.core.enums import SubscriptionStatus, UserTier
from tierkeeper.core.exceptions.types import StoreUnavailableException


class TestRead:
    @pytest.mark.asyncio
    async def test_missing_row_is_none(self, profile_cache):
        assert await profile_cache.read("nobody") is None

    @pytest.mark.asyncio
    async def test_read_by_contact(self, profile_cache):
        await profile_cache.ensure("u1", "Learner@Example.com")

        found = await profile_cache.read_by_contact(" learner@example.com ")

        assert found is not None
        user_id, snapshot = found
        assert user_id == "u1"
        assert snapshot == TierSnapshot.default()
        assert await profile_cache.read_by_contact("") is None


class TestEnsure:
    """ensure() creates a free/inactive/zero row once."""

    @pytest.mark.asyncio
    async def test_creates_default(self, profile_cache):
        snapshot = await profile_cache.ensure("u1", "u1@example.com")

        assert snapshot.tier == UserTier.FREE
        assert snapshot.subscription_status == SubscriptionStatus.INACTIVE
        assert (snapshot.courses_used, snapshot.tasks_used, snapshot.notes_used) == (
            0,
            0,
            0,
        )
        assert await profile_cache.read("u1") == snapshot

    @pytest.mark.asyncio
    async def test_existing_row_untouched(self, profile_cache):
        await profile_cache.write(
            "u1", {"tier": UserTier.PREMIUM, "notes_used": 3}, email="u1@example.com"
        )

        snapshot = await profile_cache.ensure("u1", "u1@example.com")

        assert snapshot.tier == UserTier.PREMIUM
        assert snapshot.notes_used == 3


class TestWrite:
    """Partial writes and set-once billing ids."""

    @pytest.mark.asyncio
    async def test_partial_write_keeps_other_fields(self, profile_cache):
        end = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await profile_cache.write("u1", {"tasks_used": 4}, email="u1@example.com")

        snapshot = await profile_cache.write(
            "u1",
            {
                "tier": UserTier.PREMIUM,
                "subscription_status": SubscriptionStatus.ACTIVE,
                "subscription_end_date": end,
            },
        )

        assert snapshot.tier == UserTier.PREMIUM
        assert snapshot.tasks_used == 4
        assert snapshot.subscription_end_date == end

    @pytest.mark.asyncio
    async def test_billing_ids_are_set_once(self, profile_cache):
        await profile_cache.write("u1", {"billing_customer_id": "cus_first"})

        snapshot = await profile_cache.write(
            "u1", {"billing_customer_id": "cus_second"}
        )

        assert snapshot.billing_customer_id == "cus_first"

    @pytest.mark.asyncio
    async def test_none_never_clears_billing_id(self, profile_cache):
        await profile_cache.write("u1", {"billing_subscription_id": "sub_1"})

        snapshot = await profile_cache.write("u1", {"billing_subscription_id": None})

        assert snapshot.billing_subscription_id == "sub_1"

    @pytest.mark.asyncio
    async def test_overwrite_identity(self, profile_cache):
        await profile_cache.write("u1", {"billing_subscription_id": "sub_old"})

        snapshot = await profile_cache.write(
            "u1", {"billing_subscription_id": "sub_new"}, overwrite_identity=True
        )

        assert snapshot.billing_subscription_id == "sub_new"

    @pytest.mark.asyncio
    async def test_email_recorded_only_when_missing(self, profile_cache):
        await profile_cache.ensure("u1")
        await profile_cache.write("u1", {}, email="first@example.com")
        await profile_cache.write("u1", {}, email="second@example.com")

        assert await profile_cache.read_by_contact("first@example.com") is not None
        assert await profile_cache.read_by_contact("second@example.com") is None

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, profile_cache):
        with pytest.raises(ValueError, match="Unknown snapshot fields"):
            await profile_cache.write("u1", {"plan": "gold"})


class TestStoreUnavailable:
    @pytest.mark.asyncio
    async def test_database_errors_become_store_unavailable(self):
        factory = MagicMock()
        factory.begin.side_effect = OperationalError("SELECT", {}, Exception("down"))
        cache = ProfileCache(session_factory=factory)

        with pytest.raises(StoreUnavailableException):
            await cache.read("u1")
        with pytest.raises(StoreUnavailableException):
            await cache.write("u1", {"notes_used": 1})


class TestSnapshotFromProfile:
    def test_bad_counters_are_clamped(self):
        profile = MagicMock(
            user_tier=UserTier.FREE,
            subscription_status=SubscriptionStatus.INACTIVE,
            subscription_end_date=None,
            courses_used=-3,
            tasks_used=None,
            notes_used=2,
            stripe_customer_id=None,
            stripe_subscription_id=None,
        )

        snapshot = TierSnapshot.from_profile(profile)

        assert (snapshot.courses_used, snapshot.tasks_used, snapshot.notes_used) == (
            0,
            0,
            2,
        )
