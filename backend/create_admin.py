"""
Admin Seed Script

Creates the admin account from ADMIN_EMAIL / ADMIN_PASSWORD if it does not
exist yet. Running it again is a no-op.

Run: python create_admin.py
"""

import asyncio
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings
from database import init_db, session_scope
from database.user_models import AuthProvider, UserRole
from identity.store import UserStore
from services.auth import get_password_hash


async def create_admin_user(
    store: UserStore,
    email: Optional[str] = None,
    password: Optional[str] = None,
) -> bool:
    """Create the admin record. Returns False when it already exists."""
    settings = get_settings()
    email = email or settings.ADMIN_EMAIL
    password = password or settings.ADMIN_PASSWORD

    existing = await store.get_by_email(email)
    if existing:
        print(f"Admin user already exists: {existing.email}")
        return False

    user = await store.create(
        email=email,
        password_hash=get_password_hash(password),
        first_name=settings.ADMIN_FIRST_NAME,
        last_name=settings.ADMIN_LAST_NAME,
        role=UserRole.admin.value,
        auth_provider=AuthProvider.local.value,
        email_verified=True,
    )
    print("Admin user created successfully")
    print(f"  Email: {user.email}")
    print(f"  Role:  {user.role}")
    return True


async def main():
    print("=" * 50)
    print("Creating admin user")
    print("=" * 50)

    try:
        async with session_scope() as session:
            await init_db()
            await create_admin_user(UserStore(session))
    except Exception as e:
        print(f"Error creating admin user: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    asyncio.run(main())
