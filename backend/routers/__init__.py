from .auth import router as auth_router
from .admin_users import router as admin_users_router

__all__ = [
    'auth_router',
    'admin_users_router',
]
