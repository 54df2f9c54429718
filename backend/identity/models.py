"""
Identity - Input Model and Errors

`UserIdentity` is what an identity provider tells us about the person who just
authenticated. It is transient and never persisted as-is.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class IdentityError(Exception):
    """Base class for identity reconciliation failures."""


class MissingIdentityFieldError(IdentityError):
    """
    A required identity field is absent.

    This is a precondition failure: the authentication attempt must be
    rejected, it is not a server fault.
    """

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Identity is missing required field: {field}")


class DuplicateUserError(IdentityError):
    """A write collided with the unique email or Google id index."""


class UserIdentity(BaseModel):
    """An externally authenticated identity."""
    subject_id: Optional[str] = Field(None, description="Provider-scoped subject id")
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_google_profile(cls, profile: Dict[str, Any]) -> "UserIdentity":
        """
        Build from a Google OpenID Connect userinfo payload.

        Missing fields are kept as None; the reconciler decides what is required.
        """
        subject = profile.get("sub") or profile.get("id")
        return cls(
            subject_id=str(subject) if subject else None,
            email=profile.get("email") or None,
            given_name=profile.get("given_name") or None,
            family_name=profile.get("family_name") or None,
            avatar_url=profile.get("picture") or None,
        )


def normalize_email(email: Optional[str]) -> str:
    """Lower-case and trim an email; returns '' for None."""
    return (email or "").strip().lower()
