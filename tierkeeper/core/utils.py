"""
Utility functions for the application.

- JWT token creation and decoding
- Timestamp and ISO-8601 conversions used for billing period dates
- Contact address normalization
"""

from datetime import datetime, timedelta, timezone
from typing import Any
import uuid

import jwt

from tierkeeper.core.config import settings, utils_logger


def create_jwt_token(
    data: dict[str, Any] | None, expires_delta: timedelta | None = None
) -> str:
    """
    Create a JWT token with the given data and expiration time.

    Tokens are normally issued by the identity provider; this helper signs
    tokens with the same secret for tests and operator tooling.

    Args:
        data: Claims to encode. Expected keys are 'sub' (user id) and 'email'.
        expires_delta: Optional timedelta for token expiration.
                      If None, defaults to 15 minutes from now.

    Returns:
        str: Encoded JWT token string.

    Raises:
        ValueError: If data is None.

    Examples:
        >>> token = create_jwt_token({"sub": "user_123", "email": "a@example.com"})
        >>> len(token.split('.'))
        3
    """
    if data is None:
        utils_logger.error("Attempted to create JWT token with None data")
        raise ValueError("Data cannot be None")

    to_encode = data.copy()

    if expires_delta is None:
        expires_delta = timedelta(minutes=15)

    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    to_encode["exp"] = expire
    to_encode["iat"] = now
    to_encode["jti"] = str(uuid.uuid4())

    encoded_jwt = jwt.encode(
        to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )

    utils_logger.info(
        f"JWT token created successfully with expiration: {expire.isoformat()}"
    )
    return encoded_jwt


def decode_jwt_token(token: str | None) -> dict[str, Any] | None:
    """
    Decode and validate a JWT token.

    Returns None for any invalid, expired, or tampered tokens.

    Args:
        token: The JWT token string to decode. Can be None or empty.

    Returns:
        dict[str, Any] | None: The decoded claims, or None if validation failed.
    """
    if not token:
        utils_logger.warning(
            f"JWT token decoding attempted with invalid token: "
            f"{'None' if token is None else 'empty string'}"
        )
        return None

    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        utils_logger.debug("JWT token decoded and validated successfully")
        return payload
    except jwt.ExpiredSignatureError:
        utils_logger.warning("JWT token decoding failed: token has expired")
        return None
    except jwt.InvalidTokenError as e:
        utils_logger.warning(
            f"JWT token decoding failed: invalid token - {type(e).__name__}"
        )
        return None


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 string into a timezone-aware datetime.

    A trailing "Z" is accepted. Naive values are taken as UTC and aware ones
    are converted to UTC. Unparseable values are logged and yield None.

    Examples:
        >>> parse_iso_datetime("2025-01-01T00:00:00Z")
        datetime.datetime(2025, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
        >>> parse_iso_datetime("not a date") is None
        True
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        utils_logger.warning(f"Could not parse ISO datetime: {value!r}")
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def normalize_email(email: str | None) -> str | None:
    """Lower-case and strip a contact address. Empty values become None."""
    if email is None:
        return None
    normalized = email.strip().lower()
    return normalized or None


__all__ = [
    "create_jwt_token",
    "decode_jwt_token",
    "ensure_utc",
    "normalize_email",
    "parse_iso_datetime",
]
