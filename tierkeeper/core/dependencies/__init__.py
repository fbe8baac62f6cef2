from tierkeeper.core.dependencies.auth import (
    AuthenticatedUser,
    CurrentUser,
    get_current_user,
)

__all__ = ["AuthenticatedUser", "CurrentUser", "get_current_user"]
