"""
Identity resolution between local users and Stripe customers.
"""

from dataclasses import dataclass

from tierkeeper.apps.tiers.schemas.tier import TierSnapshot
from tierkeeper.apps.tiers.services.billing_processor import BillingProcessor
from tierkeeper.apps.tiers.services.profile_cache import ProfileCache
from tierkeeper.core.config import billing_logger
from tierkeeper.core.enums import ProcessorSubscriptionStatus
from tierkeeper.core.exceptions.types import (
    IdentityNotFoundException,
    StripeAPIException,
)
from tierkeeper.core.services.payment.stripe.types import Subscription

_ACCEPTED_STATUSES = (
    ProcessorSubscriptionStatus.ACTIVE,
    ProcessorSubscriptionStatus.TRIALING,
)


@dataclass(frozen=True)
class ResolvedIdentity:
    customer_id: str
    active_subscription_id: str | None


class IdentityResolver:
    """Maps a user to a Stripe customer and their active subscription.

    Resolved customer ids are written through to the profile cache with
    set-once semantics, so later calls skip the lookup.
    """

    def __init__(self, processor: BillingProcessor, cache: ProfileCache):
        self._processor = processor
        self._cache = cache

    async def resolve_customer(
        self,
        user_id: str,
        email: str,
        snapshot: TierSnapshot | None = None,
        *,
        create_if_missing: bool = True,
    ) -> str:
        """Return the user's Stripe customer id.

        Uses the cached id when there is one. Otherwise looks the customer up
        by contact address and, when allowed, creates one.

        Args:
            user_id: The local user id.
            email: The user's contact address.
            snapshot: The cached snapshot, if the caller already read it.
            create_if_missing: Create a Stripe customer when none matches.

        Raises:
            IdentityNotFoundException: No customer exists and creation is not allowed.
            BillingProcessorException: Stripe failed.
            StoreUnavailableException: The resolved id could not be persisted.
        """
        if snapshot is None:
            snapshot = await self._cache.read(user_id)
        if snapshot is not None and snapshot.billing_customer_id:
            return snapshot.billing_customer_id

        customer = await self._processor.find_customer_by_contact(email)
        if customer is None:
            if not create_if_missing:
                billing_logger.info(f"No Stripe customer for user {user_id}")
                raise IdentityNotFoundException()
            customer = await self._processor.create_customer(email, user_id=user_id)
            billing_logger.info(f"Created Stripe customer {customer.id} for {user_id}")
        else:
            billing_logger.info(f"Adopted Stripe customer {customer.id} for {user_id}")

        stored = await self._cache.write(
            user_id, {"billing_customer_id": customer.id}, email=email
        )
        # A concurrent resolution may have stored a different id first
        return stored.billing_customer_id or customer.id

    async def find_active_subscription(
        self, customer_id: str, cached_subscription_id: str | None = None
    ) -> Subscription | None:
        """Return the customer's active subscription, if any.

        A cached id is fetched directly and accepted only while it is active
        or trialing. Otherwise the first active subscription Stripe lists wins.
        """
        if cached_subscription_id:
            try:
                subscription = await self._processor.get_subscription(
                    cached_subscription_id
                )
                if subscription.status in _ACCEPTED_STATUSES:
                    return subscription
                billing_logger.info(
                    f"Cached subscription {cached_subscription_id} is "
                    f"{subscription.status.value}, listing active subscriptions"
                )
            except StripeAPIException as e:
                if not e.is_not_found:
                    raise
                billing_logger.warning(
                    f"Cached subscription {cached_subscription_id} not found in Stripe"
                )

        subscriptions = await self._processor.list_active_subscriptions(customer_id)
        return subscriptions[0] if subscriptions else None

    async def resolve(
        self,
        user_id: str,
        email: str,
        snapshot: TierSnapshot | None = None,
        *,
        create_if_missing: bool = True,
    ) -> ResolvedIdentity:
        if snapshot is None:
            snapshot = await self._cache.read(user_id)
        customer_id = await self.resolve_customer(
            user_id, email, snapshot, create_if_missing=create_if_missing
        )
        subscription = await self.find_active_subscription(
            customer_id, snapshot.billing_subscription_id if snapshot else None
        )
        return ResolvedIdentity(
            customer_id=customer_id,
            active_subscription_id=subscription.id if subscription else None,
        )


__all__ = ["IdentityResolver", "ResolvedIdentity"]
