"""
Test suite for the billing processor facade.

Run tests:
    pytest tests/apps/tiers/services/test_billing_processor.py -v
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from tierkeeper.apps.tiers.services.billing_processor import (
    BillingProcessor,
    build_price_table,
    select_subscription,
)
from tierkeeper.core.config import settings
from tierkeeper.core.enums import BillingPeriod, SubscriptionStatus, UserTier
from tierkeeper.core.services.payment.stripe.types import Customer

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def facade(stripe_client, price_table):
    return BillingProcessor(client=stripe_client, price_table=price_table)


@pytest.fixture
def with_customer(stripe_client):
    stripe_client.find_customer_by_email.return_value = Customer(
        id="cus_123", email="learner@example.com"
    )
    return stripe_client


class TestPriceTable:
    def test_built_from_settings(self):
        table = build_price_table()
        assert (
            table[(UserTier.PREMIUM, BillingPeriod.YEARLY)]
            == settings.STRIPE_PRICE_PREMIUM_YEARLY
        )
        assert len(table) == 4

    def test_lookups(self, facade):
        assert (
            facade.price_for(UserTier.UNIVERSITY, BillingPeriod.MONTHLY)
            == "price_university_monthly"
        )
        assert facade.price_for(UserTier.DEMO, BillingPeriod.MONTHLY) is None
        assert facade.tier_for_price("price_premium_yearly") == UserTier.PREMIUM
        assert facade.tier_for_price("price_unknown") == UserTier.FREE
        assert facade.tier_for_price(None) == UserTier.FREE


class TestSelectSubscription:
    def test_entitled_wins(self, make_subscription):
        past_due = make_subscription("sub_a", status="past_due")
        active = make_subscription("sub_b", status="active")
        assert select_subscription([past_due, active], NOW).id == "sub_b"

    def test_delinquent_before_cancelled(self, make_subscription):
        canceled = make_subscription(
            "sub_a",
            status="canceled",
            cancel_at_period_end=True,
            period_end=NOW + timedelta(days=3),
        )
        past_due = make_subscription("sub_b", status="past_due")
        assert select_subscription([canceled, past_due], NOW).id == "sub_b"

    def test_empty(self):
        assert select_subscription([], NOW) is None


class TestGetStatusForContact:
    """Consolidated status derivation."""

    @pytest.mark.asyncio
    async def test_no_customer_is_free(self, facade, stripe_client):
        status = await facade.get_status_for_contact("learner@example.com", now=NOW)

        assert status.subscribed is False
        assert status.tier == "free"
        assert status.status == "inactive"
        assert status.customer_id is None
        stripe_client.list_subscriptions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deleted_customer_is_free(self, facade, stripe_client):
        stripe_client.find_customer_by_email.return_value = Customer(
            id="cus_gone", deleted=True
        )
        status = await facade.get_status_for_contact("learner@example.com", now=NOW)
        assert status.tier == "free"
        assert status.customer_id is None

    @pytest.mark.asyncio
    async def test_active_premium(self, facade, with_customer, make_subscription):
        end = NOW + timedelta(days=20)
        with_customer.list_subscriptions.return_value = [
            make_subscription(period_end=end)
        ]

        status = await facade.get_status_for_contact("learner@example.com", now=NOW)

        assert status.subscribed is True
        assert status.tier == "premium"
        assert status.status == SubscriptionStatus.ACTIVE.value
        assert status.period_end_iso == end.replace(microsecond=0).isoformat()
        assert status.customer_id == "cus_123"
        assert status.subscription_id == "sub_123"

    @pytest.mark.asyncio
    async def test_expired_period_is_free(
        self, facade, with_customer, make_subscription
    ):
        with_customer.list_subscriptions.return_value = [
            make_subscription(period_end=NOW - timedelta(days=1))
        ]

        status = await facade.get_status_for_contact("learner@example.com", now=NOW)

        assert status.tier == "free"
        assert status.status == "inactive"
        assert status.customer_id == "cus_123"

    @pytest.mark.asyncio
    async def test_expired_period_is_recorded(
        self, facade, with_customer, make_subscription, caplog
    ):
        with_customer.list_subscriptions.return_value = [
            make_subscription("sub_old", period_end=NOW - timedelta(days=1))
        ]

        with caplog.at_level(logging.WARNING, logger="tierkeeper.billing"):
            await facade.get_status_for_contact("learner@example.com", now=NOW)

        records = [r for r in caplog.records if "subscription_expired" in r.message]
        assert len(records) == 1
        assert "customer=cus_123" in records[0].message
        assert "subscription=sub_old" in records[0].message
        assert "tier=premium" in records[0].message

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_is_cancelled(
        self, facade, with_customer, make_subscription
    ):
        with_customer.list_subscriptions.return_value = [
            make_subscription(
                cancel_at_period_end=True, period_end=NOW + timedelta(days=5)
            )
        ]

        status = await facade.get_status_for_contact("learner@example.com", now=NOW)

        assert status.tier == "premium"
        assert status.status == "cancelled"
        assert status.subscribed is True

    @pytest.mark.asyncio
    async def test_past_due_keeps_tier(self, facade, with_customer, make_subscription):
        with_customer.list_subscriptions.return_value = [
            make_subscription(
                status="past_due",
                price_id="price_university_yearly",
                period_end=NOW + timedelta(days=2),
            )
        ]

        status = await facade.get_status_for_contact("learner@example.com", now=NOW)

        assert status.tier == "university"
        assert status.status == "past_due"
        assert status.subscribed is True

    @pytest.mark.asyncio
    async def test_unpaid_is_free(self, facade, with_customer, make_subscription):
        with_customer.list_subscriptions.return_value = [
            make_subscription(status="unpaid", period_end=NOW + timedelta(days=2))
        ]

        status = await facade.get_status_for_contact("learner@example.com", now=NOW)

        assert status.tier == "free"
        assert status.status == "inactive"
        assert status.subscribed is False


class TestPassThrough:
    @pytest.mark.asyncio
    async def test_create_customer_is_idempotent_per_user(self, facade, stripe_client):
        stripe_client.create_customer.return_value = Customer(id="cus_new")

        await facade.create_customer("a@example.com", user_id="u1")

        stripe_client.create_customer.assert_awaited_once_with(
            "a@example.com",
            metadata={"user_id": "u1"},
            idempotency_key="customer-create:u1",
        )

    @pytest.mark.asyncio
    async def test_list_active_filters_status(self, facade, stripe_client):
        await facade.list_active_subscriptions("cus_1")
        stripe_client.list_subscriptions.assert_awaited_once_with(
            "cus_1", status="active", limit=10
        )
