"""
Service wiring for the tier routers.

One instance of each service per process. Routers receive them through the
``get_*`` providers, so tests can swap them with
``app.dependency_overrides``.

Example usage:
    from tierkeeper.apps.tiers.dependencies import Reconciler

    @router.get("/tier")
    async def get_tier(user: CurrentUser, reconciler: Reconciler):
        return await reconciler.snapshot_for(user.id, user.email)
"""

from typing import Annotated

from fastapi import Depends

from tierkeeper.apps.tiers.services.billing_processor import BillingProcessor
from tierkeeper.apps.tiers.services.identity import IdentityResolver
from tierkeeper.apps.tiers.services.notifier import LoggingNotifier
from tierkeeper.apps.tiers.services.operations import BillingOperations
from tierkeeper.apps.tiers.services.profile_cache import ProfileCache
from tierkeeper.apps.tiers.services.quota import QuotaEnforcer
from tierkeeper.apps.tiers.services.reconciler import TierReconciler
from tierkeeper.infrastructure.scheduler.main import (
    remove_tier_refresh_job,
    schedule_tier_refresh_job,
)

profile_cache = ProfileCache()
billing_processor = BillingProcessor()
identity_resolver = IdentityResolver(billing_processor, profile_cache)
billing_operations = BillingOperations(
    billing_processor, profile_cache, identity_resolver
)
notifier = LoggingNotifier()
tier_reconciler = TierReconciler(
    billing_processor,
    profile_cache,
    notifier,
    schedule_refresh_job=schedule_tier_refresh_job,
    remove_refresh_job=remove_tier_refresh_job,
)
quota_enforcer = QuotaEnforcer(tier_reconciler)


def get_profile_cache() -> ProfileCache:
    return profile_cache


def get_billing_processor() -> BillingProcessor:
    return billing_processor


def get_billing_operations() -> BillingOperations:
    return billing_operations


def get_reconciler() -> TierReconciler:
    return tier_reconciler


def get_quota_enforcer() -> QuotaEnforcer:
    return quota_enforcer


Cache = Annotated[ProfileCache, Depends(get_profile_cache)]
Processor = Annotated[BillingProcessor, Depends(get_billing_processor)]
Operations = Annotated[BillingOperations, Depends(get_billing_operations)]
Reconciler = Annotated[TierReconciler, Depends(get_reconciler)]
Quota = Annotated[QuotaEnforcer, Depends(get_quota_enforcer)]


__all__ = [
    "Cache",
    "Operations",
    "Processor",
    "Quota",
    "Reconciler",
    "get_billing_operations",
    "get_billing_processor",
    "get_profile_cache",
    "get_quota_enforcer",
    "get_reconciler",
    "quota_enforcer",
    "tier_reconciler",
]
