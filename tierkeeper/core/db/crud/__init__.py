from tierkeeper.core.db.crud.base import BaseDB
from tierkeeper.core.db.crud.profile import ProfileDB, profile_db

__all__ = ["BaseDB", "ProfileDB", "profile_db"]
