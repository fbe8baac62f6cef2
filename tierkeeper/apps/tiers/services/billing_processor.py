"""
Billing processor facade.

Narrows the Stripe client to the calls the tier services make, owns the
plan to price table, and derives the consolidated subscription status used
by reconciliation.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from tierkeeper.core.config import Settings, billing_logger, settings
from tierkeeper.core.enums import (
    BillingPeriod,
    ProcessorSubscriptionStatus,
    SubscriptionStatus,
    UserTier,
)
from tierkeeper.core.services.payment.stripe.main import Stripe
from tierkeeper.core.services.payment.stripe.types import (
    BillingPortalSession,
    CheckoutSession,
    Customer,
    Subscription,
)

PriceTable = dict[tuple[UserTier, BillingPeriod], str]

_ENTITLED = (ProcessorSubscriptionStatus.ACTIVE, ProcessorSubscriptionStatus.TRIALING)
_DELINQUENT = (
    ProcessorSubscriptionStatus.PAST_DUE,
    ProcessorSubscriptionStatus.INCOMPLETE,
    ProcessorSubscriptionStatus.INCOMPLETE_EXPIRED,
)


@dataclass(frozen=True)
class ProcessorStatus:
    """Raw result of the consolidated status check.

    Values are strings as the processor reports them; the reconciler
    normalizes them.
    """

    subscribed: bool
    tier: str | None
    status: str | None
    period_end_iso: str | None
    customer_id: str | None = None
    subscription_id: str | None = None

    @classmethod
    def free(cls, customer_id: str | None = None) -> "ProcessorStatus":
        return cls(
            subscribed=False,
            tier=UserTier.FREE.value,
            status=SubscriptionStatus.INACTIVE.value,
            period_end_iso=None,
            customer_id=customer_id,
        )


def build_price_table(config: Settings = settings) -> PriceTable:
    """Plan to Stripe price table from settings."""
    return {
        (UserTier.PREMIUM, BillingPeriod.MONTHLY): config.STRIPE_PRICE_PREMIUM_MONTHLY,
        (UserTier.PREMIUM, BillingPeriod.YEARLY): config.STRIPE_PRICE_PREMIUM_YEARLY,
        (UserTier.UNIVERSITY, BillingPeriod.MONTHLY): config.STRIPE_PRICE_UNIVERSITY_MONTHLY,
        (UserTier.UNIVERSITY, BillingPeriod.YEARLY): config.STRIPE_PRICE_UNIVERSITY_YEARLY,
    }


def select_subscription(
    subscriptions: list[Subscription], now: datetime
) -> Subscription | None:
    """Pick the subscription that best describes the customer's state.

    Entitled (active/trialing) first, then delinquent, then one cancelling
    at a future period end, then whatever Stripe listed first.
    """
    for sub in subscriptions:
        if sub.status in _ENTITLED:
            return sub
    for sub in subscriptions:
        if sub.status in _DELINQUENT:
            return sub
    for sub in subscriptions:
        end = sub.period_end
        if sub.cancel_at_period_end and end is not None and end > now:
            return sub
    return subscriptions[0] if subscriptions else None


class BillingProcessor:
    """Calls to Stripe used by identity resolution, billing operations and reconciliation."""

    def __init__(
        self,
        client: type[Stripe] = Stripe,
        price_table: PriceTable | None = None,
    ):
        self._client = client
        self._price_table = price_table if price_table is not None else build_price_table()
        self._tier_by_price = {
            price: tier for (tier, _period), price in self._price_table.items()
        }

    def price_for(self, tier: UserTier, period: BillingPeriod) -> str | None:
        return self._price_table.get((tier, period))

    def tier_for_price(self, price_id: str | None) -> UserTier:
        """Reverse price lookup. Unknown prices map to the free tier."""
        if price_id is None:
            return UserTier.FREE
        return self._tier_by_price.get(price_id, UserTier.FREE)

    async def find_customer_by_contact(self, email: str) -> Customer | None:
        customer = await self._client.find_customer_by_email(email)
        if customer is not None and customer.deleted:
            return None
        return customer

    async def get_customer(self, customer_id: str) -> Customer:
        return await self._client.get_customer(customer_id)

    async def create_customer(self, email: str, *, user_id: str) -> Customer:
        billing_logger.info(f"Creating Stripe customer for user {user_id}")
        return await self._client.create_customer(
            email,
            metadata={"user_id": user_id},
            idempotency_key=f"customer-create:{user_id}",
        )

    async def get_subscription(self, subscription_id: str) -> Subscription:
        return await self._client.get_subscription(subscription_id)

    async def list_active_subscriptions(self, customer_id: str) -> list[Subscription]:
        return await self._client.list_subscriptions(
            customer_id, status=ProcessorSubscriptionStatus.ACTIVE.value, limit=10
        )

    async def update_subscription(
        self, subscription_id: str, *, cancel_at_period_end: bool
    ) -> Subscription:
        return await self._client.update_subscription(
            subscription_id, cancel_at_period_end=cancel_at_period_end
        )

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, Any],
    ) -> CheckoutSession:
        return await self._client.create_checkout_session(
            success_url,
            cancel_url,
            price_id,
            mode="subscription",
            customer=customer_id,
            metadata=metadata,
            subscription_metadata=metadata,
        )

    async def create_portal_session(
        self, *, customer_id: str, return_url: str
    ) -> BillingPortalSession:
        return await self._client.create_customer_portal_session(customer_id, return_url)

    async def get_status_for_contact(
        self, email: str, *, now: datetime | None = None
    ) -> ProcessorStatus:
        """Consolidated subscription status for a contact address.

        Raises:
            BillingProcessorException: If Stripe cannot be reached or errors.
        """
        now = now or datetime.now(timezone.utc)

        customer = await self.find_customer_by_contact(email)
        if customer is None:
            billing_logger.info(f"No Stripe customer for {email}, status is free")
            return ProcessorStatus.free()

        subscriptions = await self._client.list_subscriptions(customer.id, limit=10)
        subscription = select_subscription(subscriptions, now)
        if subscription is None:
            return ProcessorStatus.free(customer_id=customer.id)

        period_end = subscription.period_end
        if period_end is not None and period_end < now:
            billing_logger.warning(
                f"subscription_expired customer={customer.id} "
                f"subscription={subscription.id} period_end={period_end.isoformat()} "
                f"tier={self.tier_for_price(subscription.price_id).value}"
            )
            return ProcessorStatus.free(customer_id=customer.id)

        tier = self.tier_for_price(subscription.price_id)
        if subscription.status in _ENTITLED:
            status = (
                SubscriptionStatus.CANCELLED
                if subscription.cancel_at_period_end
                else SubscriptionStatus.ACTIVE
            )
        elif subscription.status in _DELINQUENT:
            status = SubscriptionStatus.PAST_DUE
        else:
            status = SubscriptionStatus.INACTIVE
            tier = UserTier.FREE

        subscribed = (
            subscription.status
            in (*_ENTITLED, ProcessorSubscriptionStatus.PAST_DUE)
            or subscription.cancel_at_period_end
        )

        billing_logger.info(
            f"Status for {customer.id}: subscription={subscription.id} "
            f"stripe_status={subscription.status.value} tier={tier.value} status={status.value}"
        )
        return ProcessorStatus(
            subscribed=subscribed,
            tier=tier.value,
            status=status.value,
            period_end_iso=period_end.isoformat() if period_end else None,
            customer_id=customer.id,
            subscription_id=subscription.id,
        )


__all__ = [
    "BillingProcessor",
    "PriceTable",
    "ProcessorStatus",
    "build_price_table",
    "select_subscription",
]
