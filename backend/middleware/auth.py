"""
Authentication Middleware and Dependencies

Provides:
- get_current_user: Extract user from JWT token (optional)
- get_current_user_required: Extract and validate user, 401 otherwise
- RoleChecker: Dependency for role validation
"""

from typing import Optional, List
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.user_models import UserRole
from identity.store import UserStore
from logging_config import set_request_context
from sentry_integration import set_user
from services.auth import decode_token, AuthUser, ACCESS_TOKEN

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


async def _load_user(token: str, db: AsyncSession) -> AuthUser:
    """Resolve an access token to the current state of its user."""
    token_data = decode_token(token, token_type=ACCESS_TOKEN)
    if not token_data:
        raise _unauthorized("Invalid or expired token")

    # Role and active flag come from the database, not the token claims
    user = await UserStore(db).get_by_id(token_data.user_id)
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("Account is deactivated")

    auth_user = AuthUser.from_user(user)
    set_request_context(user_id=auth_user.id, user_email=auth_user.email)
    set_user(auth_user.id, email=auth_user.email, role=auth_user.role)
    return auth_user


# ==================== DEPENDENCIES ====================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[AuthUser]:
    """
    Extract current user from JWT token.
    Returns None if no token or invalid token.
    """
    if not credentials:
        return None
    try:
        return await _load_user(credentials.credentials, db)
    except HTTPException:
        return None


async def get_current_user_required(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> AuthUser:
    """
    Extract current user from JWT token.
    Raises 401 if no token, invalid token, or unknown/deactivated user.
    """
    if not credentials:
        raise _unauthorized("Not authenticated")
    return await _load_user(credentials.credentials, db)


class RoleChecker:
    """
    Dependency class for role-based access control.

    Usage:
        @router.get("/admin-only")
        async def admin_endpoint(user: AuthUser = Depends(RoleChecker(["admin"]))):
            ...
    """

    def __init__(self, allowed_roles: List[str], detail: Optional[str] = None):
        self.allowed_roles = allowed_roles
        self.detail = detail or f"Access denied. Required roles: {allowed_roles}"

    async def __call__(
        self,
        current_user: AuthUser = Depends(get_current_user_required)
    ) -> AuthUser:
        if current_user.role not in self.allowed_roles:
            logger.warning(f"Access denied for {current_user.email} (role: {current_user.role})")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=self.detail
            )
        return current_user


require_admin = RoleChecker([UserRole.admin.value], detail="Admin access required")
