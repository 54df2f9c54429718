from .auth import (
    get_current_user,
    get_current_user_required,
    RoleChecker,
    require_admin,
)

__all__ = [
    'get_current_user',
    'get_current_user_required',
    'RoleChecker',
    'require_admin',
]
