"""
Shared fixtures: an in-memory user store with the same uniqueness rules as
the `users` table, and an isolated audit log per test.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from database.user_models import AuthProvider, UserDB, UserRole
from identity.models import DuplicateUserError, normalize_email
from services import audit


def make_user(**overrides) -> UserDB:
    """A transient UserDB with the column defaults filled in."""
    now = datetime.now(timezone.utc)
    fields = {
        "id": uuid.uuid4(),
        "email": "someone@example.com",
        "password_hash": None,
        "first_name": "",
        "last_name": "",
        "phone": None,
        "avatar": None,
        "google_id": None,
        "auth_provider": AuthProvider.local.value,
        "email_verified": False,
        "role": UserRole.user.value,
        "is_active": True,
        "refresh_token_hash": None,
        "reset_token": None,
        "reset_token_expiry": None,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    fields["email"] = normalize_email(fields["email"])
    return UserDB(**fields)


class FakeUserStore:
    """UserStore stand-in backed by a dict; records every write."""

    def __init__(self, *users: UserDB):
        self.users = {}
        self.writes = []
        self._tick = 0
        for user in users:
            self.users[user.id] = user

    def _key(self, user_id) -> Optional[uuid.UUID]:
        try:
            return user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
        except ValueError:
            return None

    def _conflicts(self, candidate_id, email=None, google_id=None) -> bool:
        for user in self.users.values():
            if user.id == candidate_id:
                continue
            if email and user.email == email:
                return True
            if google_id and user.google_id == google_id:
                return True
        return False

    async def get_by_id(self, user_id):
        return self.users.get(self._key(user_id))

    async def get_by_email(self, email):
        email = normalize_email(email)
        return next((u for u in self.users.values() if u.email == email), None)

    async def get_by_reset_token(self, token):
        now = datetime.now(timezone.utc)
        return next(
            (u for u in self.users.values()
             if u.reset_token == token and u.reset_token_expiry and u.reset_token_expiry > now),
            None,
        )

    async def find_by_provider_or_email(self, google_id, email):
        email = normalize_email(email)
        linked = [u for u in self.users.values() if u.google_id == google_id]
        if linked:
            return linked[0]
        return next((u for u in self.users.values() if u.email == email), None)

    async def create(self, **fields):
        # Strictly increasing timestamps keep "newest first" deterministic
        self._tick += 1
        fields.setdefault("created_at", datetime.now(timezone.utc) + timedelta(microseconds=self._tick))
        user = make_user(**fields)
        if self._conflicts(user.id, user.email, user.google_id):
            raise DuplicateUserError(f"User already exists: {user.email}")
        self.users[user.id] = user
        self.writes.append(("create", user.id, fields))
        return user

    async def update(self, user_id, **fields):
        unknown = [key for key in fields if not hasattr(UserDB, key)]
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown}")
        user = self.users.get(self._key(user_id))
        if user is None:
            return None
        if self._conflicts(user.id, fields.get("email"), fields.get("google_id")):
            raise DuplicateUserError(f"Update conflicts with an existing user: {user_id}")
        for key, value in fields.items():
            setattr(user, key, value)
        self.writes.append(("update", user.id, fields))
        return user

    async def delete(self, user_id):
        user = self.users.pop(self._key(user_id), None)
        if user is not None:
            self.writes.append(("delete", user.id, {}))
        return user is not None


@pytest.fixture
def fake_store():
    return FakeUserStore()


@pytest.fixture(autouse=True)
def audit_log(tmp_path, monkeypatch):
    """Route audit entries to a per-test file."""
    logger = audit.AuditLogger(tmp_path / "audit_log.jsonl")
    monkeypatch.setattr(audit, "_audit_logger", logger)
    return logger
