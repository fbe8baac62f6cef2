"""
Billing operations: checkout, cancellation and the customer portal.

Processor failures always reach the caller. Nothing here falls back to
cached data, because a money-movement action must never silently no-op.
"""

from dataclasses import dataclass
from datetime import datetime

from tierkeeper.apps.tiers.services.billing_processor import BillingProcessor
from tierkeeper.apps.tiers.services.identity import IdentityResolver
from tierkeeper.apps.tiers.services.operation_lock import BillingOperationLock
from tierkeeper.apps.tiers.services.profile_cache import ProfileCache
from tierkeeper.core.config import billing_logger, settings
from tierkeeper.core.dependencies.auth import AuthenticatedUser
from tierkeeper.core.enums import BillingPeriod, SubscriptionStatus, UserTier
from tierkeeper.core.exceptions.types import (
    BillingProcessorException,
    IdentityNotFoundException,
    InvalidPlanSelectorException,
    NoActiveSubscriptionException,
    StoreUnavailableException,
)


@dataclass(frozen=True)
class CancellationResult:
    subscription_id: str
    period_end: datetime | None


class BillingOperations:
    """User-initiated billing actions, serialized per user."""

    def __init__(
        self,
        processor: BillingProcessor,
        cache: ProfileCache,
        identity: IdentityResolver,
        lock: type[BillingOperationLock] = BillingOperationLock,
        default_origin: str = settings.DEFAULT_REDIRECT_ORIGIN,
    ):
        self._processor = processor
        self._cache = cache
        self._identity = identity
        self._lock = lock
        self._default_origin = default_origin

    def _origin(self, origin: str | None) -> str:
        return (origin or self._default_origin).rstrip("/")

    async def start_checkout(
        self,
        user: AuthenticatedUser,
        tier: UserTier,
        billing_period: BillingPeriod = BillingPeriod.MONTHLY,
        origin: str | None = None,
    ) -> str:
        """
        Create a Stripe checkout session and return its URL.

        The cached tier is not touched; it changes once Stripe confirms
        payment and reconciliation picks it up.

        Raises:
            InvalidPlanSelectorException: No price for (tier, billing_period).
            BillingProcessorException: Stripe failed.
        """
        price_id = self._processor.price_for(tier, billing_period)
        if price_id is None:
            raise InvalidPlanSelectorException(
                f"No plan for tier '{tier.value}' billed {billing_period.value}."
            )

        base = self._origin(origin)
        async with self._lock.hold(user.id):
            customer_id = await self._identity.resolve_customer(
                user.id, user.email, create_if_missing=True
            )
            session = await self._processor.create_checkout_session(
                customer_id=customer_id,
                price_id=price_id,
                success_url=f"{base}/settings?success=true",
                cancel_url=f"{base}/settings?canceled=true",
                metadata={
                    "tier": tier.value,
                    "user_email": user.email,
                    "user_id": user.id,
                },
            )

        if not session.url:
            raise BillingProcessorException("Stripe did not return a checkout URL.")

        billing_logger.info(
            f"Checkout session {session.id} created for {user.id} "
            f"({tier.value}/{billing_period.value})"
        )
        return session.url

    async def cancel_subscription(self, user: AuthenticatedUser) -> CancellationResult:
        """
        Schedule cancellation of the user's active subscription at period end.

        A user without a Stripe customer is not given one here.

        Raises:
            NoActiveSubscriptionException: No customer or no active subscription.
            BillingProcessorException: Stripe failed.
        """
        async with self._lock.hold(user.id):
            snapshot = await self._cache.read(user.id)
            try:
                customer_id = await self._identity.resolve_customer(
                    user.id, user.email, snapshot, create_if_missing=False
                )
            except IdentityNotFoundException:
                raise NoActiveSubscriptionException() from None

            subscription = await self._identity.find_active_subscription(
                customer_id, snapshot.billing_subscription_id if snapshot else None
            )
            if subscription is None:
                billing_logger.info(f"No active subscription to cancel for {user.id}")
                raise NoActiveSubscriptionException()

            updated = await self._processor.update_subscription(
                subscription.id, cancel_at_period_end=True
            )
            period_end = updated.period_end or subscription.period_end
            billing_logger.info(
                f"Subscription {updated.id} for {user.id} cancels at "
                f"{period_end.isoformat() if period_end else 'period end'}"
            )

            try:
                await self._cache.write(
                    user.id,
                    {
                        "subscription_status": SubscriptionStatus.CANCELLED,
                        "subscription_end_date": period_end,
                        "billing_subscription_id": updated.id,
                    },
                    email=user.email,
                    overwrite_identity=True,
                )
            except StoreUnavailableException:
                # Stripe already holds the cancellation; the next refresh repairs the cache
                billing_logger.error(
                    f"Cancellation of {updated.id} not written to cache for {user.id}"
                )

        return CancellationResult(subscription_id=updated.id, period_end=period_end)

    async def open_management_portal(
        self, user: AuthenticatedUser, origin: str | None = None
    ) -> str:
        """
        Create a Stripe customer portal session and return its URL.

        Raises:
            NoActiveSubscriptionException: The user has no Stripe customer.
            BillingProcessorException: Stripe failed.
        """
        async with self._lock.hold(user.id):
            try:
                customer_id = await self._identity.resolve_customer(
                    user.id, user.email, create_if_missing=False
                )
            except IdentityNotFoundException:
                raise NoActiveSubscriptionException() from None

            session = await self._processor.create_portal_session(
                customer_id=customer_id,
                return_url=f"{self._origin(origin)}/settings",
            )

        billing_logger.info(f"Portal session {session.id} opened for {user.id}")
        return session.url


__all__ = ["BillingOperations", "CancellationResult"]
