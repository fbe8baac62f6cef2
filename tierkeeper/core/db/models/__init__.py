from tierkeeper.core.db.models.profile import Profile

__all__ = ["Profile"]
