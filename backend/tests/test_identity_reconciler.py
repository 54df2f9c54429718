"""
Unit Tests for Google Identity Reconciliation

Tests:
- First Google login creates a verified user
- Google login for a local account links it (backfill)
- Already linked users are returned untouched
- Existing avatars are never overwritten
- Missing email / subject id are rejected before any store access
- Lost uniqueness races are re-looked-up once

Run with: pytest tests/test_identity_reconciler.py -v
"""

import pytest
from unittest.mock import AsyncMock

from database.user_models import AuthProvider
from identity import (
    IdentityReconciler,
    UserIdentity,
    MissingIdentityFieldError,
    DuplicateUserError,
)
from identity.service import DEFAULT_FIRST_NAME

from conftest import FakeUserStore, make_user


def google_identity(**overrides) -> UserIdentity:
    fields = {
        "subject_id": "google-123",
        "email": "jane@example.com",
        "given_name": "Jane",
        "family_name": "Doe",
        "avatar_url": "https://lh3.googleusercontent.com/jane.png",
    }
    fields.update(overrides)
    return UserIdentity(**fields)


class TestFreshCreation:

    @pytest.mark.asyncio
    async def test_creates_linked_verified_user(self, fake_store):
        user = await IdentityReconciler(fake_store).reconcile(google_identity())

        assert len(fake_store.users) == 1
        assert user.email == "jane@example.com"
        assert user.google_id == "google-123"
        assert user.first_name == "Jane"
        assert user.last_name == "Doe"
        assert user.auth_provider == AuthProvider.google.value
        assert user.email_verified is True
        assert user.avatar == "https://lh3.googleusercontent.com/jane.png"
        assert user.password_hash is None

    @pytest.mark.asyncio
    async def test_missing_names_use_defaults(self, fake_store):
        user = await IdentityReconciler(fake_store).reconcile(
            google_identity(given_name=None, family_name=None, avatar_url=None)
        )

        assert user.first_name == DEFAULT_FIRST_NAME
        assert user.last_name == ""
        assert user.avatar is None

    @pytest.mark.asyncio
    async def test_email_is_normalized(self, fake_store):
        user = await IdentityReconciler(fake_store).reconcile(
            google_identity(email="  Jane@Example.COM ")
        )

        assert user.email == "jane@example.com"


class TestLinkageBackfill:

    @pytest.mark.asyncio
    async def test_local_account_gets_linked(self):
        local = make_user(
            email="jane@example.com",
            password_hash="bcrypt-hash",
            first_name="Janet",
            email_verified=False,
        )
        store = FakeUserStore(local)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user.id == local.id
        assert len(store.users) == 1
        assert user.google_id == "google-123"
        assert user.auth_provider == AuthProvider.google.value
        assert user.email_verified is True
        # Linking never touches credentials or names
        assert user.password_hash == "bcrypt-hash"
        assert user.first_name == "Janet"

    @pytest.mark.asyncio
    async def test_email_match_is_case_insensitive(self):
        local = make_user(email="jane@example.com")
        store = FakeUserStore(local)

        user = await IdentityReconciler(store).reconcile(google_identity(email="JANE@example.com"))

        assert user.id == local.id
        assert len(store.users) == 1

    @pytest.mark.asyncio
    async def test_avatar_filled_when_missing(self):
        local = make_user(email="jane@example.com", avatar=None)
        store = FakeUserStore(local)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user.avatar == "https://lh3.googleusercontent.com/jane.png"

    @pytest.mark.asyncio
    async def test_existing_avatar_is_kept(self):
        local = make_user(email="jane@example.com", avatar="https://cdn.example.com/me.jpg")
        store = FakeUserStore(local)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user.avatar == "https://cdn.example.com/me.jpg"
        _, _, fields = store.writes[-1]
        assert "avatar" not in fields

    @pytest.mark.asyncio
    async def test_verified_flag_never_reset(self):
        local = make_user(email="jane@example.com", email_verified=True)
        store = FakeUserStore(local)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user.email_verified is True


class TestAlreadyLinked:

    @pytest.mark.asyncio
    async def test_linked_user_returned_without_writes(self):
        linked = make_user(
            email="jane@example.com",
            google_id="google-123",
            first_name="Janet",
            avatar=None,
        )
        store = FakeUserStore(linked)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user is linked
        assert store.writes == []
        assert user.first_name == "Janet"
        assert user.avatar is None

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self, fake_store):
        reconciler = IdentityReconciler(fake_store)

        first = await reconciler.reconcile(google_identity())
        second = await reconciler.reconcile(google_identity())

        assert first.id == second.id
        assert len(fake_store.users) == 1
        assert [w[0] for w in fake_store.writes] == ["create"]

    @pytest.mark.asyncio
    async def test_provider_link_wins_over_email_match(self):
        """A user linked to the subject id is preferred over one sharing the new email."""
        linked = make_user(email="old@example.com", google_id="google-123")
        other = make_user(email="jane@example.com")
        store = FakeUserStore(linked, other)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user.id == linked.id
        assert other.google_id is None
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_email_owned_by_other_google_account_is_unchanged(self):
        owner = make_user(email="jane@example.com", google_id="google-999")
        store = FakeUserStore(owner)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user.id == owner.id
        assert user.google_id == "google-999"
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_deactivated_account_is_not_linked(self):
        local = make_user(email="jane@example.com", password_hash="hash", is_active=False)
        store = FakeUserStore(local)

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user is local
        assert user.google_id is None
        assert user.auth_provider == AuthProvider.local.value
        assert user.email_verified is False
        assert store.writes == []


class TestMissingFields:

    @pytest.fixture
    def mock_store(self):
        return AsyncMock()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", [None, "", "   "])
    async def test_missing_email_rejected_without_store_access(self, mock_store, email):
        with pytest.raises(MissingIdentityFieldError) as exc_info:
            await IdentityReconciler(mock_store).reconcile(google_identity(email=email))

        assert exc_info.value.field == "email"
        assert mock_store.mock_calls == []

    @pytest.mark.asyncio
    async def test_missing_subject_rejected_without_store_access(self, mock_store):
        with pytest.raises(MissingIdentityFieldError) as exc_info:
            await IdentityReconciler(mock_store).reconcile(google_identity(subject_id=None))

        assert exc_info.value.field == "subject_id"
        assert mock_store.mock_calls == []


class TestUniquenessRace:

    @pytest.mark.asyncio
    async def test_conflict_on_create_falls_back_to_lookup(self):
        winner = make_user(email="jane@example.com", google_id="google-123")
        store = AsyncMock()
        store.find_by_provider_or_email.side_effect = [None, winner]
        store.create.side_effect = DuplicateUserError("taken")

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user is winner
        assert store.find_by_provider_or_email.await_count == 2
        store.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_conflict_on_link_falls_back_to_lookup(self):
        unlinked = make_user(email="jane@example.com")
        linked = make_user(id=unlinked.id, email="jane@example.com", google_id="google-123")
        store = AsyncMock()
        store.find_by_provider_or_email.side_effect = [unlinked, linked]
        store.update.side_effect = DuplicateUserError("taken")

        user = await IdentityReconciler(store).reconcile(google_identity())

        assert user is linked
        assert store.update.await_count == 1

    @pytest.mark.asyncio
    async def test_second_conflict_propagates(self):
        store = AsyncMock()
        store.find_by_provider_or_email.return_value = None
        store.create.side_effect = DuplicateUserError("taken")

        with pytest.raises(DuplicateUserError):
            await IdentityReconciler(store).reconcile(google_identity())

        assert store.create.await_count == 2

    @pytest.mark.asyncio
    async def test_store_failures_propagate(self):
        store = AsyncMock()
        store.find_by_provider_or_email.side_effect = ConnectionError("database down")

        with pytest.raises(ConnectionError):
            await IdentityReconciler(store).reconcile(google_identity())
