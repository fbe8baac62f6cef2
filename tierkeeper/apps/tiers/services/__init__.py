"""
Services for the tier domain.
"""

from tierkeeper.apps.tiers.services.billing_processor import (
    BillingProcessor,
    ProcessorStatus,
    build_price_table,
    select_subscription,
)
from tierkeeper.apps.tiers.services.identity import IdentityResolver, ResolvedIdentity
from tierkeeper.apps.tiers.services.notifier import (
    LoggingNotifier,
    Notifier,
    SubscriptionNotice,
    build_notice,
)
from tierkeeper.apps.tiers.services.operation_lock import (
    BillingOperationLock,
    MemoryLockBackend,
    RedisLockBackend,
)
from tierkeeper.apps.tiers.services.operations import (
    BillingOperations,
    CancellationResult,
)
from tierkeeper.apps.tiers.services.profile_cache import ProfileCache
from tierkeeper.apps.tiers.services.quota import (
    FreeLimits,
    QuotaDecision,
    QuotaEnforcer,
    UpgradePrompt,
    can_create,
    is_premium,
)
from tierkeeper.apps.tiers.services.reconciler import (
    SnapshotPublisher,
    TierReconciler,
    normalize_status,
)

__all__ = [
    # Processor
    "BillingProcessor",
    "ProcessorStatus",
    "build_price_table",
    "select_subscription",
    # Identity
    "IdentityResolver",
    "ResolvedIdentity",
    # Notices
    "LoggingNotifier",
    "Notifier",
    "SubscriptionNotice",
    "build_notice",
    # Billing operations
    "BillingOperationLock",
    "BillingOperations",
    "CancellationResult",
    "MemoryLockBackend",
    "RedisLockBackend",
    # Cache
    "ProfileCache",
    # Quota
    "FreeLimits",
    "QuotaDecision",
    "QuotaEnforcer",
    "UpgradePrompt",
    "can_create",
    "is_premium",
    # Reconciliation
    "SnapshotPublisher",
    "TierReconciler",
    "normalize_status",
]
