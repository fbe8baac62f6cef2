from sqlalchemy.ext.asyncio import AsyncSession

from tierkeeper.core.db.crud.base import BaseDB
from tierkeeper.core.db.models.profile import Profile


class ProfileDB(BaseDB[Profile]):
    def __init__(self):
        super().__init__(Profile)

    async def get_by_email(self, session: AsyncSession, email: str) -> Profile | None:
        """Look up a profile by its contact address (case-insensitive)."""
        return await self.get_one_by_filters(session, {"email": email.strip().lower()})


profile_db = ProfileDB()

__all__ = ["ProfileDB", "profile_db"]
