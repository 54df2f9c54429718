"""
Anvogue Core - User Database Model

One row per person, whether they signed up locally, through Google, or both.
Email and the Google subject id are each unique.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class AuthProvider(str, Enum):
    """How the account was most recently linked."""
    local = "local"
    google = "google"


class UserDB(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    phone = Column(String(50), nullable=True)
    avatar = Column(String(1024), nullable=True)

    # Provider linkage
    google_id = Column(String(255), unique=True, nullable=True, index=True)
    auth_provider = Column(String(20), nullable=False, default=AuthProvider.local.value)
    email_verified = Column(Boolean, nullable=False, default=False)

    role = Column(String(20), nullable=False, default=UserRole.user.value, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Session / recovery secrets, never serialized
    refresh_token_hash = Column(String(128), nullable=True)
    reset_token = Column(String(64), nullable=True, index=True)
    reset_token_expiry = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name]
        return " ".join(p for p in parts if p) or self.email

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value

    def to_dict(self) -> Dict[str, Any]:
        """Public representation; password and token fields are left out."""
        return {
            "id": str(self.id),
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "phone": self.phone,
            "avatar": self.avatar,
            "role": self.role,
            "auth_provider": self.auth_provider,
            "google_linked": self.google_id is not None,
            "email_verified": self.email_verified,
            "has_password": self.password_hash is not None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
