"""
Unit Tests for the SQLAlchemy user store

Run with: pytest tests/test_user_store.py -v
"""

import uuid

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.exc import IntegrityError

from database.user_models import UserDB
from identity import UserStore, DuplicateUserError, UserIdentity, normalize_email
from identity.models import MissingIdentityFieldError


@pytest.fixture
def mock_db():
    """Session mock: add() is sync, the rest are awaitable."""
    db = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.get = AsyncMock(return_value=None)
    db.execute = AsyncMock()
    db.delete = AsyncMock()
    return db


class TestUserStore:

    @pytest.mark.asyncio
    async def test_create_normalizes_email(self, mock_db):
        user = await UserStore(mock_db).create(email=" Jane@Example.com", first_name="Jane")

        added = mock_db.add.call_args[0][0]
        assert added is user
        assert user.email == "jane@example.com"
        mock_db.commit.assert_awaited_once()
        mock_db.refresh.assert_awaited_once_with(user)

    @pytest.mark.asyncio
    async def test_create_conflict_raises_duplicate(self, mock_db):
        mock_db.commit.side_effect = IntegrityError("INSERT", {}, Exception("unique violation"))

        with pytest.raises(DuplicateUserError):
            await UserStore(mock_db).create(email="jane@example.com")

        mock_db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_by_id_with_malformed_id(self, mock_db):
        assert await UserStore(mock_db).get_by_id("not-a-uuid") is None
        mock_db.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_unknown_user_returns_none(self, mock_db):
        result = await UserStore(mock_db).update(uuid.uuid4(), first_name="X")

        assert result is None
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, mock_db):
        with pytest.raises(ValueError):
            await UserStore(mock_db).update(uuid.uuid4(), nickname="X")

    @pytest.mark.asyncio
    async def test_update_applies_fields(self, mock_db):
        user = UserDB(id=uuid.uuid4(), email="jane@example.com", first_name="Jane")
        mock_db.get.return_value = user

        result = await UserStore(mock_db).update(str(user.id), first_name="Janet", google_id="g-1")

        assert result is user
        assert user.first_name == "Janet"
        assert user.google_id == "g-1"
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_conflict_raises_duplicate(self, mock_db):
        mock_db.get.return_value = UserDB(id=uuid.uuid4(), email="jane@example.com")
        mock_db.commit.side_effect = IntegrityError("UPDATE", {}, Exception("unique violation"))

        with pytest.raises(DuplicateUserError):
            await UserStore(mock_db).update(uuid.uuid4(), google_id="g-1")

        mock_db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete(self, mock_db):
        user = UserDB(id=uuid.uuid4(), email="jane@example.com")
        mock_db.get.return_value = user

        assert await UserStore(mock_db).delete(user.id) is True
        mock_db.delete.assert_awaited_once_with(user)


class TestUserIdentity:

    def test_from_google_profile(self):
        identity = UserIdentity.from_google_profile({
            "sub": "1234567890",
            "email": "jane@example.com",
            "email_verified": True,
            "given_name": "Jane",
            "family_name": "Doe",
            "picture": "https://lh3.googleusercontent.com/a/photo",
        })

        assert identity.subject_id == "1234567890"
        assert identity.email == "jane@example.com"
        assert identity.given_name == "Jane"
        assert identity.family_name == "Doe"
        assert identity.avatar_url == "https://lh3.googleusercontent.com/a/photo"

    def test_from_google_profile_without_optional_fields(self):
        identity = UserIdentity.from_google_profile({"id": 42, "email": "", "picture": ""})

        assert identity.subject_id == "42"
        assert identity.email is None
        assert identity.given_name is None
        assert identity.avatar_url is None

    def test_normalize_email(self):
        assert normalize_email("  Jane@Example.COM ") == "jane@example.com"
        assert normalize_email(None) == ""

    def test_missing_field_error_names_field(self):
        error = MissingIdentityFieldError("email")

        assert error.field == "email"
        assert "email" in str(error)
