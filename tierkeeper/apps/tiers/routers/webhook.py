"""
Stripe webhook handler.

Only signature verification and routing happen here. Billing fields are
never written from the event payload; the affected user is reconciled
against Stripe instead.
"""

import json
from typing import Any

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from tierkeeper.apps.tiers.dependencies import Cache, Processor, Reconciler
from tierkeeper.apps.tiers.services.billing_processor import BillingProcessor
from tierkeeper.core.config import webhook_logger
from tierkeeper.core.enums import RefreshTrigger
from tierkeeper.core.exceptions.types import (
    BadRequestException,
    BillingProcessorException,
)
from tierkeeper.core.services.payment.stripe.main import Stripe


router = APIRouter(prefix="/webhooks")


HANDLED_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.payment_succeeded",
        "invoice.payment_failed",
    }
)


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhook events",
    description="""
Receives Stripe events, verifies the signature and reconciles the affected
user's tier.

**Handled Event Types:**
- `checkout.session.completed`
- `customer.subscription.created`
- `customer.subscription.updated`
- `customer.subscription.deleted`
- `invoice.payment_succeeded`
- `invoice.payment_failed`

Other event types are acknowledged with `{"status": "ignored"}`.

**Processing Flow:**
1. Verify the `Stripe-Signature` header
2. Find the customer's email (from the event, else from Stripe)
3. Look the profile up by email
4. Run a reconciliation for that user

If Stripe cannot be reached to look the customer up, the endpoint answers
500 so Stripe retries the event.
    """,
    responses={
        200: {
            "description": "Webhook received",
            "content": {
                "application/json": {
                    "examples": {
                        "received": {
                            "summary": "User reconciled",
                            "value": {"status": "received"},
                        },
                        "ignored": {
                            "summary": "Unhandled event type",
                            "value": {"status": "ignored"},
                        },
                        "unmatched": {
                            "summary": "No profile for the customer",
                            "value": {"status": "unmatched"},
                        },
                    }
                }
            },
        },
        400: {
            "description": "Missing or invalid signature",
            "content": {
                "application/json": {
                    "example": {"detail": "Invalid Stripe webhook signature."}
                }
            },
        },
    },
    tags=["Webhooks"],
    response_model=None,
)
async def handle_stripe_webhook(
    request: Request,
    processor: Processor,
    cache: Cache,
    reconciler: Reconciler,
) -> dict[str, str] | Response:
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        webhook_logger.warning("Webhook received without Stripe-Signature header")
        raise BadRequestException("Missing Stripe-Signature header")

    Stripe.verify_webhook_signature(payload, {"Stripe-Signature": sig_header})
    # Verified above; read it back as plain dicts
    event: dict[str, Any] = json.loads(payload)

    event_id = event.get("id")
    event_type = event.get("type")
    webhook_logger.info(f"Received webhook: {event_type} ({event_id})")

    if not event_id or not event_type:
        webhook_logger.warning("Webhook missing event id or type")
        raise BadRequestException("Missing event id or type")

    if event_type not in HANDLED_EVENTS:
        webhook_logger.info(f"Unhandled event type: {event_type}")
        return {"status": "ignored"}

    obj = event.get("data", {}).get("object", {})
    try:
        email = await _customer_email(processor, obj)
    except BillingProcessorException as e:
        webhook_logger.error(f"Customer lookup for event {event_id} failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "lookup_failed"},
        )

    if not email:
        webhook_logger.warning(f"No customer email for event {event_id}")
        return {"status": "unmatched"}

    found = await cache.read_by_contact(email)
    if found is None:
        webhook_logger.info(f"No profile for {email} ({event_type})")
        return {"status": "unmatched"}

    user_id, _snapshot = found
    state = await reconciler.refresh(user_id, email, trigger=RefreshTrigger.WEBHOOK)
    webhook_logger.info(
        f"Reconciled {user_id} after {event_type}: "
        f"tier={state.snapshot.tier.value if state.snapshot else None}"
    )
    return {"status": "received"}


async def _customer_email(
    processor: BillingProcessor, obj: dict[str, Any]
) -> str | None:
    """Email of the event's customer, fetching the customer when the event lacks it."""
    details = obj.get("customer_details") or {}
    email = obj.get("customer_email") or details.get("email")
    if email:
        return email

    customer_id = obj.get("customer")
    if not customer_id:
        return None
    customer = await processor.get_customer(customer_id)
    return customer.email


__all__ = ["router", "HANDLED_EVENTS"]
