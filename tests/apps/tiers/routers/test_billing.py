"""
Test suite for the billing router.

Run tests:
    pytest tests/apps/tiers/routers/test_billing.py -v
"""

from datetime import datetime, timezone

import pytest

from tierkeeper.apps.tiers.services.operation_lock import BillingOperationLock
from tierkeeper.core.exceptions.handlers import (
    BILLING_RETRY_MESSAGE,
    NOTHING_TO_MANAGE_MESSAGE,
)
from tierkeeper.core.exceptions.types import StripeAPIException
from tierkeeper.core.services.payment.stripe.types import (
    BillingPortalSession,
    CheckoutSession,
    Customer,
)


class TestCheckout:
    """Test suite for POST /billing/checkout."""

    @pytest.mark.asyncio
    async def test_returns_checkout_url(self, client, auth_headers, processor):
        processor.find_customer_by_contact.return_value = Customer(id="cus_1")
        processor.create_checkout_session.return_value = CheckoutSession(
            id="cs_1", url="https://checkout.stripe.com/c/pay/cs_1"
        )

        response = await client.post(
            "/billing/checkout",
            json={"tier": "premium", "billing_period": "yearly"},
            headers={**auth_headers, "Origin": "https://learn.example.com"},
        )

        assert response.status_code == 201
        assert response.json() == {"url": "https://checkout.stripe.com/c/pay/cs_1"}
        kwargs = processor.create_checkout_session.await_args.kwargs
        assert kwargs["price_id"] == "price_premium_yearly"
        assert kwargs["success_url"] == "https://learn.example.com/settings?success=true"

    @pytest.mark.asyncio
    async def test_plan_without_price(self, client, auth_headers, processor):
        response = await client.post(
            "/billing/checkout", json={"tier": "demo"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json() == {"detail": "No plan for tier 'demo' billed monthly."}
        processor.create_checkout_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_tier_value(self, client, auth_headers):
        response = await client.post(
            "/billing/checkout", json={"tier": "gold"}, headers=auth_headers
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stripe_failure_is_generic(self, client, auth_headers, processor):
        processor.find_customer_by_contact.side_effect = StripeAPIException(
            "Invalid API Key provided: sk_test_****"
        )

        response = await client.post(
            "/billing/checkout", json={"tier": "premium"}, headers=auth_headers
        )

        assert response.status_code == 502
        assert response.json() == {"detail": BILLING_RETRY_MESSAGE}

    @pytest.mark.asyncio
    async def test_operation_in_progress(self, client, auth_headers, user):
        async with BillingOperationLock.hold(user.id):
            response = await client.post(
                "/billing/checkout", json={"tier": "premium"}, headers=auth_headers
            )

        assert response.status_code == 409
        assert response.headers["Retry-After"] == "2"


class TestCancel:
    """Test suite for POST /billing/cancel."""

    @pytest.mark.asyncio
    async def test_cancels_at_period_end(
        self, client, auth_headers, processor, profile_cache, user, make_subscription
    ):
        end = datetime(2026, 4, 1, tzinfo=timezone.utc)
        await profile_cache.write(user.id, {"billing_customer_id": "cus_1"})
        processor.list_active_subscriptions.return_value = [
            make_subscription("sub_7", period_end=end)
        ]
        processor.update_subscription.return_value = make_subscription(
            "sub_7", period_end=end, cancel_at_period_end=True
        )

        response = await client.post("/billing/cancel", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["subscription_id"] == "sub_7"
        assert data["period_end"].startswith("2026-04-01T00:00:00")
        stored = await profile_cache.read(user.id)
        assert stored.subscription_status == "cancelled"

    @pytest.mark.asyncio
    async def test_nothing_to_manage(self, client, auth_headers, processor):
        response = await client.post("/billing/cancel", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"detail": NOTHING_TO_MANAGE_MESSAGE}
        processor.create_customer.assert_not_awaited()


class TestPortal:
    """Test suite for POST /billing/portal."""

    @pytest.mark.asyncio
    async def test_returns_portal_url(self, client, auth_headers, processor):
        processor.find_customer_by_contact.return_value = Customer(id="cus_1")
        processor.create_portal_session.return_value = BillingPortalSession(
            id="bps_1", customer="cus_1", url="https://billing.stripe.com/p/bps_1"
        )

        response = await client.post("/billing/portal", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"url": "https://billing.stripe.com/p/bps_1"}
        processor.create_portal_session.assert_awaited_once_with(
            customer_id="cus_1", return_url="https://app.example.com/settings"
        )

    @pytest.mark.asyncio
    async def test_no_customer(self, client, auth_headers, processor):
        response = await client.post("/billing/portal", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"detail": NOTHING_TO_MANAGE_MESSAGE}
        processor.create_customer.assert_not_awaited()
