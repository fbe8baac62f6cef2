from fastapi import status


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
        self.details = details
        super().__init__(message)


class StoreUnavailableException(AppException):
    """Exception raised when the profile cache cannot be reached.

    Transient: callers retry on the next trigger.
    """

    def __init__(
        self,
        message: str = "The profile store is temporarily unavailable.",
        details: dict | None = None,
    ):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


class AuthenticationException(AppException):
    """Exception raised for authentication-related errors."""

    def __init__(self, message: str = "Authentication failed."):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found."):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictException(AppException):
    """Exception raised when there's a conflict with existing resources."""

    def __init__(self, message: str = "Resource conflict."):
        super().__init__(message, status.HTTP_409_CONFLICT)


class BadRequestException(AppException):
    """Exception raised for bad request errors."""

    def __init__(self, message: str = "Bad request."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class BillingProcessorException(AppException):
    """Exception raised when a call to the billing processor fails.

    Covers network failures as well as error responses. Stripe-specific
    failures use the subclasses below.
    """

    def __init__(
        self,
        message: str = "The billing processor request failed.",
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        details: dict | None = None,
    ):
        super().__init__(message, status_code, details)


class BillingNotConfiguredException(BillingProcessorException):
    """Exception raised when a Stripe credential is missing from settings."""

    def __init__(
        self,
        message: str = "The billing processor is not configured.",
        details: dict | None = None,
    ):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


class StripeAPIException(BillingProcessorException):
    """Exception raised for Stripe API errors."""

    def __init__(
        self,
        message: str = "A Stripe API error occurred.",
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        stripe_code: str | None = None,
        error_type: str = "api_error",
        param: str | None = None,
        request_id: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, status_code, details)
        self.stripe_code = stripe_code
        self.error_type = error_type
        self.param = param
        self.request_id = request_id

    @property
    def is_not_found(self) -> bool:
        return self.status_code == status.HTTP_404_NOT_FOUND or (
            self.stripe_code == "resource_missing"
        )


class StripeCardException(BillingProcessorException):
    """Exception raised for Stripe card errors (declined, invalid, etc.)."""

    def __init__(
        self,
        message: str = "Card was declined.",
        stripe_code: str | None = None,
        decline_code: str | None = None,
        param: str | None = None,
        request_id: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, status.HTTP_402_PAYMENT_REQUIRED, details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code
        self.param = param
        self.request_id = request_id


class IdempotencyException(BillingProcessorException):
    """Exception raised for Stripe idempotency errors."""

    def __init__(
        self,
        message: str = "Idempotency key was used with different parameters.",
        request_id: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, status.HTTP_409_CONFLICT, details)
        self.request_id = request_id


class RateLimitException(BillingProcessorException):
    """Exception raised when Stripe rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Stripe rate limit exceeded. Please try again later.",
        details: dict | None = None,
    ):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS, details)


class IdentityNotFoundException(NotFoundException):
    """Exception raised when no billing customer can be resolved for a user."""

    def __init__(self, message: str = "No billing customer found for this user."):
        super().__init__(message)


class NoActiveSubscriptionException(NotFoundException):
    """Exception raised when an operation needs a subscription and none exists."""

    def __init__(
        self,
        message: str = "Nothing to manage yet. Subscribe to a plan first.",
    ):
        super().__init__(message)


class InvalidPlanSelectorException(BadRequestException):
    """Exception raised when a (tier, billing period) pair has no price."""

    def __init__(self, message: str = "Invalid plan selection."):
        super().__init__(message)


class BillingOperationInProgressException(ConflictException):
    """Exception raised when another billing operation for the user is running."""

    def __init__(
        self,
        message: str = "Another billing operation is already in progress.",
    ):
        super().__init__(message)


__all__ = [
    "AppException",
    "StoreUnavailableException",
    "AuthenticationException",
    "NotFoundException",
    "ConflictException",
    "BadRequestException",
    "BillingProcessorException",
    "BillingNotConfiguredException",
    "StripeAPIException",
    "StripeCardException",
    "IdempotencyException",
    "RateLimitException",
    "IdentityNotFoundException",
    "NoActiveSubscriptionException",
    "InvalidPlanSelectorException",
    "BillingOperationInProgressException",
]
