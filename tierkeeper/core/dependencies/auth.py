"""
Authentication dependencies for FastAPI endpoints.

Users are authenticated by an external identity provider. Requests carry its
Bearer JWT; the ``sub`` claim is the opaque user id and ``email`` is the
contact address used to find the user's billing customer.

Example usage:
    from tierkeeper.core.dependencies.auth import CurrentUser

    @router.get("/tier")
    async def get_tier(user: CurrentUser):
        return {"user_id": user.id}
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tierkeeper.core.config import auth_logger
from tierkeeper.core.exceptions.types import AuthenticationException
from tierkeeper.core.utils import decode_jwt_token, normalize_email

# auto_error=True returns 401/403 if no token is sent
bearer_scheme = HTTPBearer(auto_error=True)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity of the caller, taken from the access token claims."""

    id: str
    email: str


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> AuthenticatedUser:
    """
    Extract and validate the JWT access token from the Authorization header.

    Args:
        credentials: The HTTP Bearer credentials containing the access token.

    Returns:
        AuthenticatedUser: The caller's user id and contact address.

    Raises:
        AuthenticationException: If the token is invalid, expired, or lacks
            the 'sub' or 'email' claims.
    """
    payload = decode_jwt_token(credentials.credentials)

    if payload is None:
        auth_logger.warning("Authentication failed: invalid or expired token")
        raise AuthenticationException("Invalid or expired access token")

    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        auth_logger.warning("Authentication failed: token missing 'sub' claim")
        raise AuthenticationException("Invalid access token")

    email = normalize_email(payload.get("email"))
    if not email:
        auth_logger.warning(
            f"Authentication failed: token for {user_id} missing 'email' claim"
        )
        raise AuthenticationException("Invalid access token")

    auth_logger.debug(f"User authenticated: {user_id}")
    return AuthenticatedUser(id=user_id, email=email)


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]

__all__ = ["AuthenticatedUser", "CurrentUser", "bearer_scheme", "get_current_user"]
