from enum import Enum


class UserTier(str, Enum):
    """Plan classification controlling quotas and feature gates."""

    FREE = "free"
    PREMIUM = "premium"
    UNIVERSITY = "university"
    DEMO = "demo"  # Elevated but never billed


class SubscriptionStatus(str, Enum):
    """Cached subscription status as shown to the user."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    CANCELLED = "cancelled"  # Cancels at the end of the current period
    PAST_DUE = "past_due"


class ProcessorSubscriptionStatus(str, Enum):
    """Status of a subscription as reported by Stripe."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    UNPAID = "unpaid"
    PAUSED = "paused"


class BillingPeriod(str, Enum):
    """Billing period offered at checkout."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class FeatureKind(str, Enum):
    """Feature kinds gated by usage quotas."""

    COURSES = "courses"
    TASKS = "tasks"
    NOTES = "notes"


class QuotaOutcome(str, Enum):
    """Outcome of a quota admission decision."""

    ADMITTED = "admitted"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNKNOWN_STATE = "unknown_state"  # No snapshot yet, fail closed


class RefreshTrigger(str, Enum):
    """What caused a reconciliation pass."""

    APP_START = "app_start"
    INTERVAL = "interval"
    EXPLICIT = "explicit"
    WEBHOOK = "webhook"


__all__ = [
    "BillingPeriod",
    "FeatureKind",
    "ProcessorSubscriptionStatus",
    "QuotaOutcome",
    "RefreshTrigger",
    "SubscriptionStatus",
    "UserTier",
]
