"""
Authentication Service for Anvogue Core

Implements:
- Password hashing with bcrypt
- JWT access and refresh tokens (refresh tokens rotate on use)
- Local signup, login, password change and password reset

Roles:
- admin: access to the admin panel endpoints
- user: storefront customer
"""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.user_models import AuthProvider, UserDB, UserRole
from identity.models import DuplicateUserError
from identity.store import UserStore

logger = logging.getLogger(__name__)

settings = get_settings()

ALGORITHM = settings.JWT_ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
REFRESH_TOKEN_EXPIRE_DAYS = settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS
PASSWORD_RESET_EXPIRE_MINUTES = settings.PASSWORD_RESET_EXPIRE_MINUTES

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ==================== MODELS ====================

class Token(BaseModel):
    """JWT Token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: Dict[str, Any]


class TokenData(BaseModel):
    """Data extracted from JWT token"""
    user_id: str
    email: str
    role: str
    exp: Optional[datetime] = None
    token_type: str = ACCESS_TOKEN


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class AuthUser(BaseModel):
    """Authenticated user context"""
    id: str
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    is_active: bool = True

    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value

    @classmethod
    def from_user(cls, user: UserDB) -> "AuthUser":
        return cls(
            id=str(user.id),
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            is_active=bool(user.is_active),
        )


# ==================== PASSWORD UTILITIES ====================

def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash; False for accounts without a password."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def hash_refresh_token(token: str) -> str:
    """Digest stored server-side so a refresh token can be rotated and revoked."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ==================== JWT UTILITIES ====================

def _create_token(user: UserDB, token_type: str, expires_delta: timedelta, secret: str) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "type": token_type,
        "exp": now + expires_delta,
        "iat": now,
        # Distinguishes tokens minted in the same second
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def create_access_token(user: UserDB, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        user,
        ACCESS_TOKEN,
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        settings.JWT_SECRET_KEY,
    )


def create_refresh_token(user: UserDB, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        user,
        REFRESH_TOKEN,
        expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
        settings.refresh_secret,
    )


def decode_token(token: str, token_type: str = ACCESS_TOKEN) -> Optional[TokenData]:
    """Decode and validate a JWT of the expected type; None when invalid or expired."""
    secret = settings.refresh_secret if token_type == REFRESH_TOKEN else settings.JWT_SECRET_KEY
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    user_id = payload.get("sub")
    email = payload.get("email")
    role = payload.get("role")
    if not user_id or not email or not role:
        return None
    if payload.get("type", ACCESS_TOKEN) != token_type:
        return None

    exp = payload.get("exp")
    return TokenData(
        user_id=user_id,
        email=email,
        role=role,
        token_type=token_type,
        exp=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None
    )


# ==================== AUTH SERVICE ====================

class AuthService:
    """Local authentication flows plus token issuance for any login path."""

    def __init__(self, db: AsyncSession, store: Optional[UserStore] = None):
        self.db = db
        self.store = store or UserStore(db)

    async def authenticate_user(self, email: str, password: str) -> Optional[UserDB]:
        user = await self.store.get_by_email(email)

        if not user:
            logger.warning(f"Login failed: user not found - {email}")
            return None
        if not user.is_active:
            logger.warning(f"Login failed: user inactive - {email}")
            return None
        if not user.password_hash:
            logger.warning(f"Login failed: no password set - {email}")
            return None
        if not verify_password(password, user.password_hash):
            logger.warning(f"Login failed: invalid password - {email}")
            return None

        logger.info(f"Login successful: {user.email} (role: {user.role})")
        return user

    async def issue_tokens(self, user: UserDB) -> Token:
        """Mint an access/refresh pair and remember the refresh token digest."""
        access_token = create_access_token(user)
        refresh_token = create_refresh_token(user)

        updated = await self.store.update(user.id, refresh_token_hash=hash_refresh_token(refresh_token))

        return Token(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=(updated or user).to_dict(),
        )

    async def login(self, email: str, password: str) -> Optional[Token]:
        user = await self.authenticate_user(email, password)
        if not user:
            return None
        return await self.issue_tokens(user)

    async def refresh_tokens(self, refresh_token: str) -> Optional[Token]:
        """Rotate the token pair; the presented token must be the latest issued."""
        token_data = decode_token(refresh_token, token_type=REFRESH_TOKEN)
        if not token_data:
            return None

        user = await self.store.get_by_id(token_data.user_id)
        if not user or not user.is_active or not user.refresh_token_hash:
            return None

        if not hmac.compare_digest(user.refresh_token_hash, hash_refresh_token(refresh_token)):
            logger.warning(f"Refresh token reuse or mismatch for user {user.id}")
            return None

        return await self.issue_tokens(user)

    async def register_user(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
        role: str = UserRole.user.value,
    ) -> UserDB:
        """
        Create a local account.

        Raises:
            ValueError: email already registered
        """
        if await self.store.get_by_email(email):
            raise ValueError("Email already registered")

        try:
            return await self.store.create(
                email=email,
                password_hash=get_password_hash(password),
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                role=role,
                auth_provider=AuthProvider.local.value,
            )
        except DuplicateUserError:
            raise ValueError("Email already registered")

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> bool:
        """Change the password; every refresh token is invalidated."""
        user = await self.store.get_by_id(user_id)
        if not user:
            return False

        if not verify_password(current_password, user.password_hash):
            return False

        await self.store.update(
            user.id,
            password_hash=get_password_hash(new_password),
            refresh_token_hash=None,
        )
        return True

    async def request_password_reset(self, email: str) -> Optional[UserDB]:
        """
        Store a one-hour reset token for the user, if one exists.

        Returns the updated user carrying `reset_token` (None for unknown or
        deactivated accounts). Callers must not reveal which case happened.
        """
        user = await self.store.get_by_email(email)
        if not user or not user.is_active:
            return None

        reset_token = secrets.token_urlsafe(32)
        user = await self.store.update(
            user.id,
            reset_token=reset_token,
            reset_token_expiry=datetime.now(timezone.utc) + timedelta(minutes=PASSWORD_RESET_EXPIRE_MINUTES),
        )
        logger.info(f"Password reset token issued for user {user.id}")
        return user

    async def reset_password(self, token: str, new_password: str) -> bool:
        user = await self.store.get_by_reset_token(token)
        if not user:
            return False

        await self.store.update(
            user.id,
            password_hash=get_password_hash(new_password),
            reset_token=None,
            reset_token_expiry=None,
            refresh_token_hash=None,
        )
        return True

    async def logout(self, user_id: str) -> bool:
        user = await self.store.update(user_id, refresh_token_hash=None)
        return user is not None

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = await self.store.get_by_id(user_id)
        return user.to_dict() if user else None
