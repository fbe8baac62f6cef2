"""
Billing router.

This module provides endpoints for:
- Starting a Stripe checkout
- Cancelling the subscription at period end
- Opening the Stripe customer portal

Redirect URLs are built from the request's ``Origin`` header, falling back
to ``DEFAULT_REDIRECT_ORIGIN``.
"""

from typing import Annotated

from fastapi import APIRouter, Header, status

from tierkeeper.apps.tiers.dependencies import Operations
from tierkeeper.apps.tiers.schemas import (
    CancellationResponse,
    CheckoutRequest,
    RedirectResponse,
)
from tierkeeper.core.config import request_logger
from tierkeeper.core.dependencies.auth import CurrentUser
from tierkeeper.core.exceptions.handlers import (
    NOTHING_TO_MANAGE_MESSAGE,
    exception_schema,
)


router = APIRouter(prefix="/billing", tags=["Billing"], responses=exception_schema)

_NOTHING_TO_MANAGE = {
    "description": "No Stripe customer or active subscription",
    "content": {"application/json": {"example": {"detail": NOTHING_TO_MANAGE_MESSAGE}}},
}
_IN_PROGRESS = {
    "description": "Another billing operation is running for the user",
    "content": {
        "application/json": {
            "example": {"detail": "Another billing operation is already in progress."}
        }
    },
}


@router.post(
    "/checkout",
    response_model=RedirectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a Stripe checkout",
    description="""
## Start Checkout

Creates a Stripe checkout session for the plan and returns its URL. The
Stripe customer is created on first use.

| Field | Type | Required | Description |
|-------|------|----------|-------------|
| `tier` | string | ✅ | `premium` or `university` |
| `billing_period` | string | ❌ | `monthly` (default) or `yearly` |

The tier is not changed here. It changes once Stripe confirms payment and
the next reconciliation picks it up.
""",
    responses={
        400: {
            "description": "No price for the plan",
            "content": {
                "application/json": {
                    "example": {"detail": "No plan for tier 'demo' billed monthly."}
                }
            },
        },
        409: _IN_PROGRESS,
    },
)
async def start_checkout(
    payload: CheckoutRequest,
    user: CurrentUser,
    operations: Operations,
    origin: Annotated[str | None, Header()] = None,
) -> RedirectResponse:
    request_logger.info(
        f"POST /billing/checkout - user={user.id} tier={payload.tier.value} "
        f"period={payload.billing_period.value}"
    )
    url = await operations.start_checkout(
        user, payload.tier, payload.billing_period, origin=origin
    )
    return RedirectResponse(url=url)


@router.post(
    "/cancel",
    response_model=CancellationResponse,
    summary="Cancel the subscription at period end",
    description="""
## Cancel Subscription

Schedules cancellation of the active subscription at the end of the current
billing period. Access continues until `period_end`.
""",
    responses={404: _NOTHING_TO_MANAGE, 409: _IN_PROGRESS},
)
async def cancel_subscription(
    user: CurrentUser, operations: Operations
) -> CancellationResponse:
    request_logger.info(f"POST /billing/cancel - user={user.id}")
    result = await operations.cancel_subscription(user)
    return CancellationResponse(
        subscription_id=result.subscription_id, period_end=result.period_end
    )


@router.post(
    "/portal",
    response_model=RedirectResponse,
    summary="Open the Stripe customer portal",
    responses={404: _NOTHING_TO_MANAGE, 409: _IN_PROGRESS},
)
async def open_portal(
    user: CurrentUser,
    operations: Operations,
    origin: Annotated[str | None, Header()] = None,
) -> RedirectResponse:
    """Portal session returning to ``{origin}/settings``. Never creates a customer."""
    request_logger.info(f"POST /billing/portal - user={user.id}")
    url = await operations.open_management_portal(user, origin=origin)
    return RedirectResponse(url=url)
