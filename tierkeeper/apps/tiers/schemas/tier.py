"""
Pydantic schemas for tier snapshots and the tier endpoints.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Annotated

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt

from tierkeeper.core.enums import FeatureKind, SubscriptionStatus, UserTier
from tierkeeper.core.utils import ensure_utc

if TYPE_CHECKING:
    from tierkeeper.core.db.models import Profile


def _count(value: int | None) -> int:
    return max(value or 0, 0)


class TierSnapshot(BaseModel):
    """Cached billing and usage state for one user."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "tier": "premium",
                "subscription_status": "active",
                "subscription_end_date": "2025-01-01T00:00:00Z",
                "courses_used": 3,
                "tasks_used": 12,
                "notes_used": 7,
                "billing_customer_id": "cus_Q2x8Yb1",
                "billing_subscription_id": "sub_1PzQk2",
            }
        },
    )

    tier: Annotated[UserTier, Field(description="Plan classification.")] = (
        UserTier.FREE
    )
    subscription_status: Annotated[
        SubscriptionStatus, Field(description="Last known subscription status.")
    ] = SubscriptionStatus.INACTIVE
    subscription_end_date: Annotated[
        datetime | None,
        Field(description="End of the current billing period (UTC)."),
    ] = None
    courses_used: NonNegativeInt = 0
    tasks_used: NonNegativeInt = 0
    notes_used: NonNegativeInt = 0
    billing_customer_id: Annotated[
        str | None, Field(description="Stripe customer id, set once.")
    ] = None
    billing_subscription_id: Annotated[
        str | None, Field(description="Stripe subscription id, set once.")
    ] = None

    @classmethod
    def default(cls) -> "TierSnapshot":
        """Free, inactive, zero usage and no billing ids."""
        return cls()

    @classmethod
    def from_profile(cls, profile: "Profile") -> "TierSnapshot":
        # Counters are also written by the database itself; clamp bad values
        return cls(
            tier=profile.user_tier,
            subscription_status=profile.subscription_status,
            subscription_end_date=ensure_utc(profile.subscription_end_date),
            courses_used=_count(profile.courses_used),
            tasks_used=_count(profile.tasks_used),
            notes_used=_count(profile.notes_used),
            billing_customer_id=profile.stripe_customer_id,
            billing_subscription_id=profile.stripe_subscription_id,
        )

    def used(self, kind: FeatureKind) -> int:
        match kind:
            case FeatureKind.COURSES:
                return self.courses_used
            case FeatureKind.TASKS:
                return self.tasks_used
            case FeatureKind.NOTES:
                return self.notes_used
            case _:
                raise ValueError(f"Unknown feature kind: {kind!r}")

    @property
    def needs_end_date_repair(self) -> bool:
        """A paid tier without a renewal date is incomplete."""
        return self.tier != UserTier.FREE and self.subscription_end_date is None


class TierState(BaseModel):
    """Published tier state for one user."""

    model_config = ConfigDict(frozen=True)

    snapshot: TierSnapshot | None = None
    loading: Annotated[
        bool, Field(description="True while the first reconciliation is running.")
    ] = False
    possibly_stale: Annotated[
        bool,
        Field(
            description="True when the billing processor could not be reached and the cached copy was served."
        ),
    ] = False
    usage_unknown: Annotated[
        bool,
        Field(
            description="True when the usage counters were not read from the store and are placeholders."
        ),
    ] = False
    sequence: Annotated[
        int, Field(description="Issuance number of the refresh that produced it.")
    ] = 0


class TierResponse(BaseModel):
    """Schema for GET /tier and POST /tier/refresh."""

    snapshot: TierSnapshot | None
    loading: bool
    possibly_stale: bool
    is_premium: bool

    @classmethod
    def from_state(cls, state: TierState, is_premium: bool) -> "TierResponse":
        return cls(
            snapshot=state.snapshot,
            loading=state.loading,
            possibly_stale=state.possibly_stale,
            is_premium=is_premium,
        )


class SessionResponse(BaseModel):
    """Schema for a closed reconciliation session."""

    user_id: str
    active: bool


__all__ = [
    "SessionResponse",
    "TierResponse",
    "TierSnapshot",
    "TierState",
]
