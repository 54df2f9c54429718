"""
Prints the admin record created by create_admin.py.

Run: python verify_admin.py
"""

import asyncio
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings
from database import session_scope
from database.user_models import UserDB
from identity.store import UserStore


async def verify_admin_user(store: UserStore, email: Optional[str] = None) -> Optional[UserDB]:
    email = email or get_settings().ADMIN_EMAIL
    user = await store.get_by_email(email)

    if not user:
        print(f"Admin user not found: {email}")
        return None

    print("Admin user found:")
    print(f"  Email:          {user.email}")
    print(f"  Name:           {user.first_name} {user.last_name}")
    print(f"  Role:           {user.role}")
    print(f"  Email verified: {user.email_verified}")
    print(f"  Created at:     {user.created_at}")
    return user


async def main():
    try:
        async with session_scope() as session:
            await verify_admin_user(UserStore(session))
    except Exception as e:
        print(f"Error verifying admin user: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    asyncio.run(main())
