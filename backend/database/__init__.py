from .connection import get_db, engine, AsyncSessionLocal, init_db, session_scope, Base

from .user_models import UserDB, UserRole, AuthProvider

__all__ = [
    'get_db', 'engine', 'AsyncSessionLocal', 'init_db', 'session_scope', 'Base',
    'UserDB', 'UserRole', 'AuthProvider',
]
