"""
Unit Tests for Admin User Management

Run with: pytest tests/test_admin_users.py -v
"""

import uuid

import pytest
from unittest.mock import AsyncMock, MagicMock

from database.user_models import UserRole
from services.admin_users import AdminUserService, ProtectedUserError, UserNotFoundError, escape_like

from conftest import FakeUserStore, make_user


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.scalar = AsyncMock(return_value=0)
    return db


@pytest.fixture
def customer():
    return make_user(
        email="jane@example.com",
        first_name="Jane",
        password_hash="bcrypt-hash",
        refresh_token_hash="digest",
    )


@pytest.fixture
def admin():
    return make_user(email="admin@anvogue.com", role=UserRole.admin.value)


@pytest.fixture
def service(mock_db, customer, admin):
    return AdminUserService(mock_db, store=FakeUserStore(customer, admin))


class TestListingAndStats:

    @pytest.mark.parametrize("term, expected", [
        ("jane", "jane"),
        ("jane_doe", "jane\\_doe"),
        ("100%", "100\\%"),
        ("a\\b", "a\\\\b"),
    ])
    def test_escape_like(self, term, expected):
        assert escape_like(term) == expected

    @pytest.mark.asyncio
    async def test_list_users_paginates(self, mock_db, customer):
        mock_db.scalar.return_value = 45
        result = MagicMock()
        result.scalars.return_value.all.return_value = [customer]
        mock_db.execute.return_value = result

        page = await AdminUserService(mock_db).list_users(page=2, limit=20, search="jane", role="user")

        assert page["pagination"] == {"page": 2, "limit": 20, "total": 45, "pages": 3}
        assert page["users"][0]["email"] == "jane@example.com"
        assert "password_hash" not in page["users"][0]

    @pytest.mark.asyncio
    async def test_list_users_empty(self, mock_db):
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        mock_db.execute.return_value = result

        page = await AdminUserService(mock_db).list_users()

        assert page["users"] == []
        assert page["pagination"] == {"page": 1, "limit": 20, "total": 0, "pages": 0}

    @pytest.mark.asyncio
    async def test_stats(self, mock_db):
        # total, admins, verified, new this month
        mock_db.scalar.side_effect = [10, 2, 7, 3]

        stats = await AdminUserService(mock_db).get_user_stats()

        assert stats == {
            "total": 10,
            "admins": 2,
            "regular_users": 8,
            "verified": 7,
            "unverified": 3,
            "new_this_month": 3,
        }


class TestUserMaintenance:

    @pytest.mark.asyncio
    async def test_get_user(self, service, customer):
        user = await service.get_user(str(customer.id))

        assert user["id"] == str(customer.id)

    @pytest.mark.asyncio
    async def test_get_missing_user(self, service):
        with pytest.raises(UserNotFoundError):
            await service.get_user(str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_update_role(self, service, customer):
        user = await service.update_user_role(str(customer.id), "admin")

        assert user["role"] == "admin"

    @pytest.mark.asyncio
    async def test_update_role_rejects_unknown_role(self, service, customer):
        with pytest.raises(ValueError, match="Invalid role"):
            await service.update_user_role(str(customer.id), "superuser")

    @pytest.mark.asyncio
    async def test_update_user_only_editable_fields(self, service, customer):
        user = await service.update_user(str(customer.id), {
            "first_name": "Janet",
            "email_verified": True,
            "role": "admin",
        })

        assert user["first_name"] == "Janet"
        assert user["email_verified"] is True
        assert user["role"] == "user"

    @pytest.mark.asyncio
    async def test_deactivate_clears_credentials(self, service, customer):
        result = await service.deactivate_user(str(customer.id))

        assert result["message"] == "User deactivated successfully"
        assert customer.is_active is False
        assert customer.password_hash is None
        assert customer.refresh_token_hash is None

    @pytest.mark.asyncio
    async def test_admin_cannot_be_deactivated(self, service, admin):
        with pytest.raises(ProtectedUserError):
            await service.deactivate_user(str(admin.id))

        assert admin.is_active is True

    @pytest.mark.asyncio
    async def test_delete_user(self, service, customer):
        await service.delete_user(str(customer.id))

        with pytest.raises(UserNotFoundError):
            await service.get_user(str(customer.id))

    @pytest.mark.asyncio
    async def test_admin_cannot_be_deleted(self, service, admin):
        with pytest.raises(ProtectedUserError):
            await service.delete_user(str(admin.id))

        assert (await service.get_user(str(admin.id)))["role"] == "admin"
