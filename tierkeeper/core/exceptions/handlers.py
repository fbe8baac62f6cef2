from fastapi import Request, status
from fastapi.responses import JSONResponse

from tierkeeper.core.config import request_logger
from tierkeeper.core.exceptions.types import (
    AppException,
    AuthenticationException,
    BillingOperationInProgressException,
    BillingProcessorException,
    NoActiveSubscriptionException,
    StoreUnavailableException,
)

BILLING_RETRY_MESSAGE = (
    "We couldn't complete the billing request. Please try again in a moment."
)
NOTHING_TO_MANAGE_MESSAGE = (
    "Nothing to manage yet. You don't have an active subscription."
)


async def general_exception_handler(request: Request, exc: AppException):
    """
    Handles application exceptions by passing their message through.

    Args:
        request: The request object.
        exc (AppException): The exception instance.

    Returns:
        JSONResponse: The exception's status code and message.
    """
    request_logger.error(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


async def store_unavailable_exception_handler(
    request: Request, exc: StoreUnavailableException
):
    """
    Handles profile store outages with a retryable 503.

    The underlying database error stays in the logs only.
    """
    request_logger.error(f"StoreUnavailableException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "Service temporarily unavailable. Please retry."},
        headers={"Retry-After": "5"},
    )


async def authentication_exception_handler(
    request: Request, exc: AuthenticationException
):
    """
    Handles authentication exceptions by returning a JSON response.

    Args:
        request: The request object.
        exc (AuthenticationException): The authentication exception instance.

    Returns:
        JSONResponse: A response containing the error message and status code 401.
    """
    request_logger.warning(f"AuthenticationException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def billing_processor_exception_handler(
    request: Request, exc: BillingProcessorException
):
    """
    Handles billing processor failures with a generic retryable message.

    The processor's own message is logged and kept out of the response.
    """
    request_logger.error(
        f"{type(exc).__name__} on {request.method} {request.url.path}: "
        f"{exc.message} (status={exc.status_code})"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": BILLING_RETRY_MESSAGE},
    )


async def no_active_subscription_exception_handler(
    request: Request, exc: NoActiveSubscriptionException
):
    """Handles billing actions that need a subscription the user doesn't have."""
    request_logger.info(f"NoActiveSubscriptionException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": NOTHING_TO_MANAGE_MESSAGE},
    )


async def operation_in_progress_exception_handler(
    request: Request, exc: BillingOperationInProgressException
):
    """Handles a billing operation refused because another one is running."""
    request_logger.warning(f"BillingOperationInProgressException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers={"Retry-After": "2"},
    )


exception_schema = {
    status.HTTP_401_UNAUTHORIZED: {
        "description": "Authentication Error",
        "content": {
            "application/json": {
                "example": {"detail": "Invalid or expired access token"},
            }
        },
    },
    status.HTTP_502_BAD_GATEWAY: {
        "description": "Billing Processor Error",
        "content": {
            "application/json": {
                "example": {"detail": BILLING_RETRY_MESSAGE},
            }
        },
    },
    status.HTTP_503_SERVICE_UNAVAILABLE: {
        "description": "Store Unavailable",
        "content": {
            "application/json": {
                "example": {"detail": "Service temporarily unavailable. Please retry."},
            }
        },
    },
}


__all__ = [
    "BILLING_RETRY_MESSAGE",
    "NOTHING_TO_MANAGE_MESSAGE",
    "authentication_exception_handler",
    "billing_processor_exception_handler",
    "exception_schema",
    "general_exception_handler",
    "no_active_subscription_exception_handler",
    "operation_in_progress_exception_handler",
    "store_unavailable_exception_handler",
]
