"""
Identity - Reconciliation

Maps an externally authenticated identity onto exactly one user record:
- an already linked record is returned untouched
- a record found by email (e.g. local signup) gets the Google link backfilled,
  unless it is deactivated, in which case it is returned unchanged
- otherwise a new record is created

No logging here; failures propagate to the authentication boundary.
"""

from typing import Any, Dict

from database.user_models import AuthProvider, UserDB

from .models import DuplicateUserError, MissingIdentityFieldError, UserIdentity, normalize_email
from .store import UserStore

DEFAULT_FIRST_NAME = "User"
DEFAULT_LAST_NAME = ""

# One initial attempt plus one re-lookup after a lost uniqueness race
RECONCILE_ATTEMPTS = 2


class IdentityReconciler:
    """Stateless per call; all state lives in the store."""

    def __init__(self, store: UserStore):
        self.store = store

    async def reconcile(self, identity: UserIdentity) -> UserDB:
        """
        Return the single user record for `identity`, creating or linking it.

        Raises:
            MissingIdentityFieldError: subject id or email absent (no store access)
            DuplicateUserError: the uniqueness conflict persisted after a re-lookup
        """
        subject_id = (identity.subject_id or "").strip()
        email = normalize_email(identity.email)
        if not subject_id:
            raise MissingIdentityFieldError("subject_id")
        if not email:
            raise MissingIdentityFieldError("email")

        for attempt in range(RECONCILE_ATTEMPTS):
            try:
                return await self._reconcile_once(identity, subject_id, email)
            except DuplicateUserError:
                # A concurrent login created or linked the record first
                if attempt + 1 >= RECONCILE_ATTEMPTS:
                    raise

    async def _reconcile_once(self, identity: UserIdentity, subject_id: str, email: str) -> UserDB:
        user = await self.store.find_by_provider_or_email(subject_id, email)

        if user is None:
            return await self.store.create(**self._new_user_fields(identity, subject_id, email))

        # Deactivated accounts are never linked; the caller refuses the login
        if user.google_id or not user.is_active:
            return user

        return await self.store.update(user.id, **self._link_fields(user, identity, subject_id))

    @staticmethod
    def _link_fields(user: UserDB, identity: UserIdentity, subject_id: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "google_id": subject_id,
            "auth_provider": AuthProvider.google.value,
            "email_verified": True,
        }
        if not user.avatar and identity.avatar_url:
            fields["avatar"] = identity.avatar_url
        return fields

    @staticmethod
    def _new_user_fields(identity: UserIdentity, subject_id: str, email: str) -> Dict[str, Any]:
        return {
            "email": email,
            "google_id": subject_id,
            "first_name": identity.given_name or DEFAULT_FIRST_NAME,
            "last_name": identity.family_name or DEFAULT_LAST_NAME,
            "auth_provider": AuthProvider.google.value,
            "email_verified": True,
            "avatar": identity.avatar_url,
        }
