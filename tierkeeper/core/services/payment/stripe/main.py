import asyncio
import random
from typing import Any, Literal

import httpx
import stripe as stripe_sdk
from fastapi import status as http_status

from tierkeeper.core.config import settings, stripe_logger
from tierkeeper.core.exceptions.types import (
    BadRequestException,
    BillingNotConfiguredException,
    BillingProcessorException,
    IdempotencyException,
    RateLimitException,
    StripeAPIException,
    StripeCardException,
)
from tierkeeper.core.services.payment.stripe.types import (
    BillingPortalSession,
    CheckoutSession,
    Customer,
    CustomerListResponse,
    Subscription,
    SubscriptionListResponse,
)


def _is_retryable(status_code: int) -> bool:
    return status_code == http_status.HTTP_429_TOO_MANY_REQUESTS or status_code >= 500


def _form_value(value: Any) -> str:
    return "" if value is None else str(value)


def _idempotency_headers(key: str | None) -> dict[str, str]:
    return {"Idempotency-Key": key} if key else {}


def _error_from_response(response: httpx.Response) -> BillingProcessorException:
    """Map a failed Stripe response onto the billing exception family.

    See https://docs.stripe.com/api/errors for the error types.
    """
    status_code = response.status_code
    request_id = response.headers.get("Request-Id")
    try:
        body = response.json()
    except ValueError:
        body = {"error": {"message": response.text}}

    error = body.get("error") or {}
    error_type = error.get("type")
    code = error.get("code")
    message = error.get("message") or f"Stripe API error {status_code}"
    stripe_logger.error(
        f"Stripe {status_code} {error_type or 'unknown'} "
        f"(code={code or '-'}, request_id={request_id or '-'}): {message}"
    )

    if status_code >= 500:
        return StripeAPIException(
            message=message,
            status_code=http_status.HTTP_502_BAD_GATEWAY,
            stripe_code=code,
            error_type=error_type or "api_error",
            request_id=request_id,
            details=body,
        )
    if status_code == http_status.HTTP_429_TOO_MANY_REQUESTS:
        return RateLimitException(
            message=message,
            details={
                "code": code,
                "type": error_type or "rate_limit_error",
                "request_id": request_id,
            },
        )
    if status_code == http_status.HTTP_409_CONFLICT or error_type == "idempotency_error":
        return IdempotencyException(
            message=message, request_id=request_id, details=body
        )
    if error_type == "card_error":
        return StripeCardException(
            message=message,
            stripe_code=code,
            decline_code=error.get("decline_code"),
            param=error.get("param"),
            request_id=request_id,
            details=body,
        )
    return StripeAPIException(
        message=message,
        status_code=status_code,
        stripe_code=code,
        error_type=error_type or "api_error",
        param=error.get("param"),
        request_id=request_id,
        details=body,
    )


class Stripe:
    """Raw Stripe REST client over ``httpx``.

    All methods are class methods sharing one lazily created
    ``httpx.AsyncClient``. Call ``aclose()`` on shutdown.
    """

    _api_key: str = settings.STRIPE_API_KEY
    _base_url: str = settings.STRIPE_API_BASE_URL or "https://api.stripe.com"
    _webhook_secret: str = settings.STRIPE_WEBHOOK_SECRET
    _client: httpx.AsyncClient | None = None

    # Backoff stays below the tier refresh interval
    _BACKOFF_BASE: float = 1.0
    _BACKOFF_MAX: float = 8.0
    _JITTER: float = 0.2

    @staticmethod
    def _flatten_to_payload(
        payload: dict[str, Any],
        prefix: str,
        data: dict[str, Any],
        *,
        max_depth: int = 3,
        _current_depth: int = 0,
    ) -> None:
        """
        Write ``data`` into ``payload`` using Stripe's bracket notation.

        ``{"metadata": {"user_id": "1"}}`` under ``subscription_data`` becomes
        ``payload["subscription_data[metadata][user_id]"] = "1"``. List items
        are indexed. Values nested deeper than ``max_depth`` are stringified.
        """
        for key, value in data.items():
            full_key = f"{prefix}[{key}]"
            if _current_depth >= max_depth:
                payload[full_key] = _form_value(value)
                continue

            if isinstance(value, dict):
                items: list[tuple[str, Any]] = [(full_key, value)]
            elif isinstance(value, list):
                items = [(f"{full_key}[{i}]", item) for i, item in enumerate(value)]
            else:
                payload[full_key] = _form_value(value)
                continue

            for item_key, item in items:
                if isinstance(item, dict):
                    Stripe._flatten_to_payload(
                        payload,
                        item_key,
                        item,
                        max_depth=max_depth,
                        _current_depth=_current_depth + 1,
                    )
                else:
                    payload[item_key] = _form_value(item)

    @classmethod
    def _check_api_key(cls) -> None:
        if not cls._api_key.strip():
            raise BillingNotConfiguredException(
                "Stripe API key is not set. Set STRIPE_API_KEY in the environment or .env file."
            )

    @classmethod
    def _check_webhook_secret(cls) -> None:
        if not cls._webhook_secret.strip():
            raise BillingNotConfiguredException(
                "Stripe webhook secret is not set. Set STRIPE_WEBHOOK_SECRET in the environment or .env file."
            )

    @classmethod
    def _get_client(cls) -> httpx.AsyncClient:
        """Shared client, authenticating with the API key as the BasicAuth user."""
        if cls._client is None:
            cls._check_api_key()
            cls._client = httpx.AsyncClient(
                base_url=cls._base_url,
                timeout=httpx.Timeout(30.0),
                auth=httpx.BasicAuth(cls._api_key, ""),
            )
            stripe_logger.info("Stripe HTTP client initialized")
        return cls._client

    @classmethod
    def _compute_backoff(cls, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-based), with jitter."""
        base = min(cls._BACKOFF_BASE * 2 ** (attempt - 1), cls._BACKOFF_MAX)
        return base * random.uniform(1 - cls._JITTER, 1 + cls._JITTER)

    @classmethod
    async def _request(
        cls,
        method: str,
        endpoint: str,
        headers: dict[str, str] | None = None,
        *,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        max_attempts: int = 3,
    ) -> dict[str, Any]:
        """
        Send one Stripe API request and return the decoded JSON body.

        5xx, 429 and network failures are retried with backoff up to
        ``max_attempts`` times. Other errors are raised at once.

        Raises
        ------
            StripeCardException
                For card errors.
            IdempotencyException
                For reused idempotency keys (409).
            RateLimitException
                When still rate limited after the last attempt.
            StripeAPIException
                For other API errors, including 5xx after the last attempt.
            BillingProcessorException
                When Stripe cannot be reached after the last attempt.
            BillingNotConfiguredException
                When STRIPE_API_KEY is empty.
        """
        client = cls._get_client()

        for attempt in range(1, max_attempts + 1):
            final = attempt == max_attempts
            try:
                resp = await client.request(
                    method, endpoint, data=data, headers=headers, params=params
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if final:
                    stripe_logger.error(
                        f"Stripe {method} {endpoint} unreachable after "
                        f"{max_attempts} attempts: {exc}"
                    )
                    raise BillingProcessorException(
                        message="Unable to connect to Stripe. Please try again later.",
                        status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                        details={"error": str(exc), "type": "network_error"},
                    ) from exc
                await cls._backoff(attempt, max_attempts, f"{type(exc).__name__}: {exc}")
                continue

            if resp.is_success:
                return cls._decode(resp, method, endpoint)
            if _is_retryable(resp.status_code) and not final:
                await cls._backoff(
                    attempt,
                    max_attempts,
                    f"HTTP {resp.status_code} (request_id={resp.headers.get('Request-Id')})",
                )
                continue
            raise _error_from_response(resp)

        raise BillingProcessorException(
            message="Stripe request was never attempted.",
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @classmethod
    async def _backoff(cls, attempt: int, max_attempts: int, reason: str) -> None:
        wait = cls._compute_backoff(attempt)
        stripe_logger.warning(
            f"Stripe attempt {attempt}/{max_attempts} failed ({reason}); "
            f"retrying in {wait:.1f}s"
        )
        await asyncio.sleep(wait)

    @staticmethod
    def _decode(resp: httpx.Response, method: str, endpoint: str) -> dict[str, Any]:
        request_id = resp.headers.get("Request-Id")
        try:
            body = resp.json()
        except ValueError:
            raise StripeAPIException(
                message="Stripe returned a response that is not JSON.",
                request_id=request_id,
                details={"body": resp.text[:500]},
            ) from None
        stripe_logger.info(f"Stripe {method} {endpoint} ok (request_id={request_id})")
        return body

    @classmethod
    async def aclose(cls) -> None:
        """Close the underlying HTTP client, if it was created."""
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None
            stripe_logger.info("Stripe HTTP client closed")

    @classmethod
    def verify_webhook_signature(
        cls, body: bytes, headers: dict[str, str]
    ) -> stripe_sdk.Event:
        """Verify the signature of a Stripe webhook event.

        Parameters
        ----------
        body : bytes
            The raw request body of the webhook event.
        headers : dict[str, str]
            The request headers, including 'Stripe-Signature'.

        Returns
        -------
        stripe_sdk.Event
            The verified Stripe Event object.

        Raises
        ------
        BillingNotConfiguredException
            If the webhook secret is not configured.
        BadRequestException
            If the payload or signature is invalid.
        """
        cls._check_webhook_secret()
        try:
            return stripe_sdk.Webhook.construct_event(
                payload=body,
                sig_header=headers.get("Stripe-Signature", ""),
                secret=cls._webhook_secret,
            )
        except (stripe_sdk.SignatureVerificationError, ValueError) as exc:
            stripe_logger.error(f"Webhook signature verification failed: {exc}")
            raise BadRequestException("Invalid Stripe webhook signature.") from exc

    @classmethod
    async def find_customer_by_email(cls, email: str) -> Customer | None:
        """Return the first Stripe customer with the given email, if any.

        Parameters
        ----------
        email : str
            Contact address to match exactly.

        Returns
        -------
        Customer | None
            The first match in Stripe's order, or None.
        """
        body = await cls._request(
            "GET", "/v1/customers", params={"email": email, "limit": 1}
        )
        customers = CustomerListResponse.model_validate(body)
        if not customers.data:
            return None
        return customers.data[0]

    @classmethod
    async def get_customer(cls, customer_id: str) -> Customer:
        """Retrieve a Stripe Customer by ID (GET /v1/customers/{id})."""
        body = await cls._request("GET", f"/v1/customers/{customer_id}")
        return Customer.model_validate(body)

    @classmethod
    async def create_customer(
        cls,
        email: str,
        *,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> Customer:
        """Create a customer. Pass ``idempotency_key`` so a retried create cannot duplicate."""
        payload: dict[str, Any] = {"email": email}

        if name is not None:
            payload["name"] = name
        if metadata is not None:
            cls._flatten_to_payload(payload, "metadata", metadata)

        body = await cls._request(
            "POST",
            "/v1/customers",
            data=payload,
            headers=_idempotency_headers(idempotency_key),
        )
        return Customer.model_validate(body)

    @classmethod
    async def get_subscription(cls, subscription_id: str) -> Subscription:
        """Retrieve a Stripe Subscription by ID.

        Raises
        ------
        StripeAPIException
            With status 404 when the subscription does not exist.
        """
        body = await cls._request("GET", f"/v1/subscriptions/{subscription_id}")
        return Subscription.model_validate(body)

    @classmethod
    async def list_subscriptions(
        cls,
        customer_id: str,
        *,
        status: str | None = None,
        limit: int = 10,
    ) -> list[Subscription]:
        """List a customer's subscriptions in Stripe's order.

        Parameters
        ----------
        customer_id : str
            The Stripe customer identifier.
        status : str, optional
            Stripe status filter (e.g. "active"). Stripe's default excludes
            canceled subscriptions.
        limit : int, optional
            Maximum number of subscriptions to return. Defaults to 10.
        """
        params: dict[str, Any] = {"customer": customer_id, "limit": limit}
        if status is not None:
            params["status"] = status
        body = await cls._request("GET", "/v1/subscriptions", params=params)
        return SubscriptionListResponse.model_validate(body).data

    @classmethod
    async def update_subscription(
        cls,
        subscription_id: str,
        *,
        cancel_at_period_end: bool | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> Subscription:
        """Update a subscription (POST /v1/subscriptions/{id}).

        Setting ``cancel_at_period_end`` schedules cancellation at the end of
        the current billing period instead of terminating immediately.
        """
        payload: dict[str, Any] = {}
        if cancel_at_period_end is not None:
            payload["cancel_at_period_end"] = "true" if cancel_at_period_end else "false"
        if metadata is not None:
            cls._flatten_to_payload(payload, "metadata", metadata)

        body = await cls._request(
            "POST",
            f"/v1/subscriptions/{subscription_id}",
            data=payload,
            headers=_idempotency_headers(idempotency_key),
        )
        return Subscription.model_validate(body)

    @classmethod
    async def create_checkout_session(
        cls,
        success_url: str,
        cancel_url: str,
        price_id: str,
        *,
        mode: Literal["payment", "setup", "subscription"] = "subscription",
        customer: str | None = None,
        metadata: dict[str, Any] | None = None,
        subscription_metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> CheckoutSession:
        """
        Create a Stripe Checkout Session for a single recurring price.

        Parameters
        ----------
        success_url : str
            Redirect target after a successful payment.
        cancel_url : str
            Redirect target if the customer cancels.
        price_id : str
            The Stripe price to subscribe to (quantity 1).
        mode : Literal["payment", "setup", "subscription"], optional
            Defaults to "subscription".
        customer : str | None, optional
            The ID of an existing customer to associate with the session.
        metadata : dict[str, Any] | None, optional
            Metadata attached to the session.
        subscription_metadata : dict[str, Any] | None, optional
            Metadata copied onto the created subscription.
        idempotency_key : str | None, optional
            Stripe idempotency key.

        Returns
        -------
        CheckoutSession
            The created session; ``url`` is the redirect target.
        """
        payload: dict[str, Any] = {
            "success_url": success_url,
            "cancel_url": cancel_url,
            "mode": mode,
        }
        cls._flatten_to_payload(payload, "line_items[0]", {"price": price_id, "quantity": 1})

        if customer is not None:
            payload["customer"] = customer
        if metadata is not None:
            cls._flatten_to_payload(payload, "metadata", metadata)
        if subscription_metadata is not None:
            cls._flatten_to_payload(
                payload, "subscription_data", {"metadata": subscription_metadata}
            )

        body = await cls._request(
            "POST",
            "/v1/checkout/sessions",
            data=payload,
            headers=_idempotency_headers(idempotency_key),
        )
        return CheckoutSession.model_validate(body)

    @classmethod
    async def create_customer_portal_session(
        cls,
        customer_id: str,
        return_url: str,
    ) -> BillingPortalSession:
        """Portal session for an existing customer; ``url`` is the redirect target."""
        payload = {
            "customer": customer_id,
            "return_url": return_url,
        }
        body = await cls._request("POST", "/v1/billing_portal/sessions", data=payload)
        return BillingPortalSession.model_validate(body)


__all__ = ["Stripe"]
