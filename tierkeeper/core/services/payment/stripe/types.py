from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from tierkeeper.core.enums import ProcessorSubscriptionStatus


def coerce_timestamp_to_datetime(ts: Any) -> Any:
    """Converts a Unix timestamp (in seconds) to a UTC datetime."""
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return ts


Timestamp = Annotated[datetime, BeforeValidator(coerce_timestamp_to_datetime)]


class StripeObject(BaseModel):
    """Base for Stripe resources. Fields not modelled here are ignored."""

    model_config = ConfigDict(extra="ignore")


class ListResponse(StripeObject):
    has_more: bool = False
    url: str | None = None


class Customer(StripeObject):
    """Simplified Stripe Customer object with essential fields."""

    id: Annotated[str, Field(description="Unique identifier for the customer.")]
    object: Annotated[
        Literal["customer"],
        Field(description="String representing the object's type. Always 'customer'."),
    ] = "customer"
    email: Annotated[
        str | None,
        Field(description="The customer's email address."),
    ] = None
    name: Annotated[
        str | None,
        Field(description="The customer's full name or business name."),
    ] = None
    created: Annotated[
        Timestamp | None,
        Field(description="Time at which the object was created."),
    ] = None
    deleted: Annotated[
        bool,
        Field(description="Present and true when the customer has been deleted."),
    ] = False
    metadata: Annotated[
        dict[str, Any],
        Field(description="Set of key-value pairs attached to the object."),
    ] = {}


class CustomerListResponse(ListResponse):
    data: list[Customer] = []


class SubscriptionItemPrice(StripeObject):
    id: Annotated[str, Field(description="Unique identifier for the price.")]
    product: Annotated[
        str | None,
        Field(description="The ID of the product this price is associated with."),
    ] = None


class SubscriptionItem(StripeObject):
    id: Annotated[str, Field(description="Unique identifier for the item.")]
    price: Annotated[
        SubscriptionItemPrice,
        Field(description="The price the customer is subscribed to."),
    ]
    current_period_end: Annotated[
        Timestamp | None,
        Field(
            description="End of the current period for this item. Newer API versions report the period here."
        ),
    ] = None


class SubscriptionItems(ListResponse):
    data: list[SubscriptionItem] = []


class Subscription(StripeObject):
    """Simplified Stripe Subscription object with the fields tiers are derived from."""

    id: Annotated[str, Field(description="Unique identifier for the subscription.")]
    object: Annotated[
        Literal["subscription"],
        Field(description="String representing the object's type."),
    ] = "subscription"
    customer: Annotated[
        str,
        Field(description="ID of the customer who owns the subscription."),
    ]
    status: Annotated[
        ProcessorSubscriptionStatus,
        Field(description="Possible values are incomplete, incomplete_expired, trialing, active, past_due, canceled, unpaid, or paused."),
    ]
    cancel_at_period_end: Annotated[
        bool,
        Field(
            description="Whether this subscription will be canceled at the end of the current billing period."
        ),
    ] = False
    current_period_end: Annotated[
        Timestamp | None,
        Field(
            description="End of the current period. Older API versions report the period on the subscription."
        ),
    ] = None
    items: Annotated[
        SubscriptionItems,
        Field(description="List of subscription items, each with an attached price."),
    ] = SubscriptionItems()
    metadata: Annotated[
        dict[str, Any],
        Field(description="Set of key-value pairs attached to the object."),
    ] = {}

    @property
    def price_id(self) -> str | None:
        """Price id of the first item, if any."""
        if not self.items.data:
            return None
        return self.items.data[0].price.id

    @property
    def period_end(self) -> datetime | None:
        """End of the current billing period, wherever the API version puts it."""
        if self.current_period_end is not None:
            return self.current_period_end
        if self.items.data:
            return self.items.data[0].current_period_end
        return None


class SubscriptionListResponse(ListResponse):
    data: list[Subscription] = []


class CheckoutSession(StripeObject):
    """Stripe Checkout Session, reduced to what the redirect needs."""

    id: Annotated[str, Field(description="Unique identifier for the session.")]
    object: Annotated[
        Literal["checkout.session"],
        Field(description="String representing the object's type."),
    ] = "checkout.session"
    customer: Annotated[
        str | None,
        Field(description="The ID of the customer for this session."),
    ] = None
    mode: Annotated[
        Literal["payment", "setup", "subscription"] | None,
        Field(description="The mode of the Checkout Session."),
    ] = None
    url: Annotated[
        str | None,
        Field(description="The URL to the Checkout Session."),
    ] = None
    metadata: Annotated[
        dict[str, Any],
        Field(description="Set of key-value pairs attached to the object."),
    ] = {}


class BillingPortalSession(StripeObject):
    """Stripe Customer Portal Session object."""

    id: Annotated[str, Field(description="Unique identifier for the session.")]
    object: Annotated[
        Literal["billing_portal.session"],
        Field(
            description="String representing the object's type. Always 'billing_portal.session'."
        ),
    ] = "billing_portal.session"
    customer: Annotated[
        str,
        Field(description="The ID of the customer for this session."),
    ]
    return_url: Annotated[
        str | None,
        Field(
            description="The URL to redirect customers to when they leave the portal."
        ),
    ] = None
    url: Annotated[
        str,
        Field(
            description="The short-lived URL of the session that gives customers access to the customer portal."
        ),
    ]


__all__ = [
    "BillingPortalSession",
    "CheckoutSession",
    "Customer",
    "CustomerListResponse",
    "Subscription",
    "SubscriptionItem",
    "SubscriptionItemPrice",
    "SubscriptionItems",
    "SubscriptionListResponse",
    "coerce_timestamp_to_datetime",
]
