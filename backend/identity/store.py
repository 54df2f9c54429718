"""
Identity - User Store

Thin persistence layer over the `users` table. Every write commits
immediately, and unique-index violations surface as DuplicateUserError so
callers can tell a lost race apart from an outage.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy import case, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.user_models import UserDB

from .models import DuplicateUserError, normalize_email

UserId = Union[uuid.UUID, str]


def _as_uuid(user_id: UserId) -> Optional[uuid.UUID]:
    if isinstance(user_id, uuid.UUID):
        return user_id
    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        return None


class UserStore:
    """Create, find and update user records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: UserId) -> Optional[UserDB]:
        key = _as_uuid(user_id)
        if key is None:
            return None
        return await self.db.get(UserDB, key)

    async def get_by_email(self, email: str) -> Optional[UserDB]:
        result = await self.db.execute(
            select(UserDB).where(UserDB.email == normalize_email(email))
        )
        return result.scalars().first()

    async def get_by_reset_token(self, token: str) -> Optional[UserDB]:
        """Find the user holding an unexpired password reset token."""
        result = await self.db.execute(
            select(UserDB).where(
                UserDB.reset_token == token,
                UserDB.reset_token_expiry > datetime.now(timezone.utc),
            )
        )
        return result.scalars().first()

    async def find_by_provider_or_email(self, google_id: str, email: str) -> Optional[UserDB]:
        """
        One query matching either the Google subject id or the email.

        When both predicates match different rows, the row already linked to
        `google_id` wins.
        """
        linked_first = case((UserDB.google_id == google_id, 0), else_=1)
        result = await self.db.execute(
            select(UserDB)
            .where(or_(UserDB.google_id == google_id, UserDB.email == normalize_email(email)))
            .order_by(linked_first, UserDB.created_at)
            .limit(1)
        )
        return result.scalars().first()

    async def create(self, **fields: Any) -> UserDB:
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        user = UserDB(**fields)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateUserError(f"User already exists: {fields.get('email')}") from e
        await self.db.refresh(user)
        return user

    async def update(self, user_id: UserId, **fields: Any) -> Optional[UserDB]:
        """Apply `fields` to one user and commit; None when the id is unknown."""
        unknown = [key for key in fields if not hasattr(UserDB, key)]
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown}")

        user = await self.get_by_id(user_id)
        if user is None:
            return None

        for key, value in fields.items():
            setattr(user, key, value)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateUserError(f"Update conflicts with an existing user: {user_id}") from e
        await self.db.refresh(user)
        return user

    async def delete(self, user_id: UserId) -> bool:
        user = await self.get_by_id(user_id)
        if user is None:
            return False
        await self.db.delete(user)
        await self.db.commit()
        return True
