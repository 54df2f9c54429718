"""
Admin User Management

Listing, statistics and maintenance of user records for the admin panel.
Admin accounts are protected from deactivation and deletion.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.user_models import UserDB, UserRole
from identity.store import UserStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

EDITABLE_FIELDS = ("first_name", "last_name", "phone", "email_verified")

LIKE_ESCAPE = "\\"


def escape_like(term: str) -> str:
    """Make `%` and `_` in a search term match literally."""
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


class UserNotFoundError(LookupError):
    pass


class ProtectedUserError(ValueError):
    """The operation is not allowed on admin accounts."""


class AdminUserService:

    def __init__(self, db: AsyncSession, store: Optional[UserStore] = None):
        self.db = db
        self.store = store or UserStore(db)

    async def list_users(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        search: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Newest users first, optionally filtered by a search term and role."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        conditions = []
        if search:
            pattern = f"%{escape_like(search.strip())}%"
            conditions.append(or_(
                UserDB.email.ilike(pattern, escape=LIKE_ESCAPE),
                UserDB.first_name.ilike(pattern, escape=LIKE_ESCAPE),
                UserDB.last_name.ilike(pattern, escape=LIKE_ESCAPE),
            ))
        if role:
            conditions.append(UserDB.role == role)

        total = await self.db.scalar(select(func.count(UserDB.id)).where(*conditions))
        result = await self.db.execute(
            select(UserDB)
            .where(*conditions)
            .order_by(UserDB.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        users = result.scalars().all()

        total = total or 0
        return {
            "users": [user.to_dict() for user in users],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    async def get_user_stats(self) -> Dict[str, int]:
        now = datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        total = await self._count()
        admins = await self._count(UserDB.role == UserRole.admin.value)
        verified = await self._count(UserDB.email_verified.is_(True))
        new_this_month = await self._count(UserDB.created_at >= month_start)

        return {
            "total": total,
            "admins": admins,
            "regular_users": total - admins,
            "verified": verified,
            "unverified": total - verified,
            "new_this_month": new_this_month,
        }

    async def _count(self, *conditions) -> int:
        return await self.db.scalar(select(func.count(UserDB.id)).where(*conditions)) or 0

    async def _require_user(self, user_id: str) -> UserDB:
        user = await self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        user = await self._require_user(user_id)
        return user.to_dict()

    async def update_user_role(self, user_id: str, role: str) -> Dict[str, Any]:
        if role not in [r.value for r in UserRole]:
            raise ValueError(f"Invalid role. Must be one of: {[r.value for r in UserRole]}")

        user = await self._require_user(user_id)
        updated = await self.store.update(user.id, role=role)
        logger.info(f"Role for user {user.id} changed from {user.role} to {role}")
        return updated.to_dict()

    async def update_user(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the editable fields present in `changes`; others are ignored."""
        user = await self._require_user(user_id)
        fields = {key: changes[key] for key in EDITABLE_FIELDS if key in changes}
        if not fields:
            return user.to_dict()
        updated = await self.store.update(user.id, **fields)
        return updated.to_dict()

    async def deactivate_user(self, user_id: str) -> Dict[str, Any]:
        """Block every login path: clear the password and the refresh token."""
        user = await self._require_user(user_id)
        if user.is_admin:
            raise ProtectedUserError("Cannot deactivate admin users")

        await self.store.update(
            user.id,
            is_active=False,
            password_hash=None,
            refresh_token_hash=None,
        )
        return {"message": "User deactivated successfully"}

    async def delete_user(self, user_id: str) -> Dict[str, Any]:
        user = await self._require_user(user_id)
        if user.is_admin:
            raise ProtectedUserError("Cannot delete admin users")

        await self.store.delete(user.id)
        logger.info(f"Deleted user {user.id} ({user.email})")
        return {"message": "User deleted successfully"}
