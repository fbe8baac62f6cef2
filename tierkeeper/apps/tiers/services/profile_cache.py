"""
Profile cache accessor.

The profile row is the only shared mutable record for a user. Every call
runs in its own short transaction and writes only the columns it is given,
so concurrent writers (other devices, the webhook, the interval refresh)
never clobber fields they did not touch.
"""

from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tierkeeper.apps.tiers.schemas.tier import TierSnapshot
from tierkeeper.core.config import database_logger
from tierkeeper.core.db import AsyncSessionLocal
from tierkeeper.core.db.crud import profile_db
from tierkeeper.core.db.models import Profile
from tierkeeper.core.exceptions.types import (
    ConflictException,
    StoreUnavailableException,
)
from tierkeeper.core.utils import normalize_email

# Snapshot field name -> profile column
_COLUMNS: dict[str, str] = {
    "tier": "user_tier",
    "subscription_status": "subscription_status",
    "subscription_end_date": "subscription_end_date",
    "courses_used": "courses_used",
    "tasks_used": "tasks_used",
    "notes_used": "notes_used",
    "billing_customer_id": "stripe_customer_id",
    "billing_subscription_id": "stripe_subscription_id",
}

_IDENTITY_COLUMNS = ("stripe_customer_id", "stripe_subscription_id")


class ProfileCache:
    """Partial-field reads and upserts of the per-user profile row.

    Raises ``StoreUnavailableException`` when the database cannot be reached
    and ``ConflictException`` on unique-constraint violations.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    ):
        self._session_factory = session_factory

    async def read(self, user_id: str) -> TierSnapshot | None:
        """Return the cached snapshot for a user, or None if no row exists."""
        try:
            async with self._session_factory.begin() as session:
                profile = await profile_db.get_by_id(session, user_id)
                return TierSnapshot.from_profile(profile) if profile else None
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("read", user_id, e) from e

    async def read_by_contact(self, email: str) -> tuple[str, TierSnapshot] | None:
        """Legacy lookup by contact address, used when only the email is known."""
        contact = normalize_email(email)
        if contact is None:
            return None
        try:
            async with self._session_factory.begin() as session:
                profile = await profile_db.get_by_email(session, contact)
                if profile is None:
                    return None
                return profile.id, TierSnapshot.from_profile(profile)
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("read_by_contact", contact, e) from e

    async def ensure(self, user_id: str, email: str | None = None) -> TierSnapshot:
        """Return the user's snapshot, creating a free/inactive/zero row if missing."""
        return await self.write(user_id, {}, email=email)

    async def write(
        self,
        user_id: str,
        fields: dict[str, Any],
        *,
        email: str | None = None,
        overwrite_identity: bool = False,
    ) -> TierSnapshot:
        """Upsert the given snapshot fields and return the resulting snapshot.

        Fields are named as on ``TierSnapshot``. Billing identity ids are
        set once: a differing value for an id that is already stored is
        dropped unless ``overwrite_identity`` is set.

        Args:
            user_id: Owner of the row.
            fields: Snapshot fields to write. Unnamed fields are left untouched.
            email: Contact address recorded when the row has none yet.
            overwrite_identity: Replace stored billing ids (explicit re-resolution).

        Raises:
            ValueError: If a field name is unknown.
            ConflictException: On a unique-constraint violation.
            StoreUnavailableException: If the database cannot be reached.
        """
        updates = self._to_columns(fields)
        contact = normalize_email(email)

        try:
            return await self._write_once(user_id, updates, contact, overwrite_identity)
        except ConflictException:
            # A concurrent writer may have created the row first
            database_logger.info(
                f"Profile write for {user_id} conflicted, retrying once"
            )
            return await self._write_once(user_id, updates, contact, overwrite_identity)

    async def _write_once(
        self,
        user_id: str,
        updates: dict[str, Any],
        contact: str | None,
        overwrite_identity: bool,
    ) -> TierSnapshot:
        try:
            async with self._session_factory.begin() as session:
                profile = await profile_db.get_by_id(session, user_id)

                if profile is None:
                    data: dict[str, Any] = {"id": user_id, "email": contact, **updates}
                    profile = await profile_db.create(session, data, commit_self=False)
                    database_logger.info(f"Created profile for {user_id}")
                    return TierSnapshot.from_profile(profile)

                if not overwrite_identity:
                    updates = self._keep_identity(profile, updates)
                if contact and profile.email is None:
                    updates["email"] = contact

                if updates:
                    updated = await profile_db.update(
                        session, user_id, updates, commit_self=False
                    )
                    if updated is not None:
                        profile = updated

                return TierSnapshot.from_profile(profile)
        except IntegrityError as e:
            raise ConflictException(
                f"Profile write for {user_id} conflicts with an existing record."
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("write", user_id, e) from e

    @staticmethod
    def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - set(_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown snapshot fields: {sorted(unknown)}")
        return {_COLUMNS[name]: value for name, value in fields.items()}

    @staticmethod
    def _keep_identity(profile: Profile, updates: dict[str, Any]) -> dict[str, Any]:
        """Drop identity values that would replace an already stored id."""
        kept = dict(updates)
        for column in _IDENTITY_COLUMNS:
            if column not in kept:
                continue
            current = getattr(profile, column)
            new = kept[column]
            if new is None or (current is not None and current != new):
                if new is not None:
                    database_logger.warning(
                        f"Ignoring {column} change for {profile.id}: "
                        f"stored {current}, got {new}"
                    )
                kept.pop(column)
        return kept

    @staticmethod
    def _unavailable(
        operation: str, key: str, error: Exception
    ) -> StoreUnavailableException:
        database_logger.error(
            f"Profile {operation} failed for {key}: {type(error).__name__}: {error}"
        )
        return StoreUnavailableException(details={"operation": operation})


__all__ = ["ProfileCache"]
