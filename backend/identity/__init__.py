"""
Identity Module

Links externally authenticated identities (Google) to user records,
guaranteeing a single user per email.
"""

from .models import (
    UserIdentity,
    IdentityError,
    MissingIdentityFieldError,
    DuplicateUserError,
    normalize_email,
)
from .store import UserStore
from .service import IdentityReconciler

__all__ = [
    'UserIdentity',
    'IdentityError',
    'MissingIdentityFieldError',
    'DuplicateUserError',
    'normalize_email',
    'UserStore',
    'IdentityReconciler',
]
