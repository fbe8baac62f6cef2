"""
Pydantic schemas for billing endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from tierkeeper.core.enums import BillingPeriod, UserTier


class CheckoutRequest(BaseModel):
    """Schema for starting a Stripe checkout."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "tier": "premium",
                "billing_period": "yearly",
            }
        }
    )

    tier: UserTier
    billing_period: BillingPeriod = BillingPeriod.MONTHLY


class RedirectResponse(BaseModel):
    """Schema for endpoints that hand back a processor-hosted URL."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"url": "https://checkout.stripe.com/c/pay/cs_test_abc123"}
        }
    )

    url: str


class CancellationResponse(BaseModel):
    """Schema for a cancellation scheduled at period end."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "subscription_id": "sub_1PzQk2",
                "period_end": "2025-01-01T00:00:00Z",
            }
        }
    )

    subscription_id: str
    period_end: datetime | None


__all__ = ["CancellationResponse", "CheckoutRequest", "RedirectResponse"]
