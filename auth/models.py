"""
auth/models.py -- Persistence dataclass for locally stored accounts.

Pattern: Data class. UserStore maps rows to
UserRecord; LocalAuthProvider maps UserRecord to the provider-neutral
core.models.Identity before anything leaves the auth package.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.models import Identity


@dataclass
class UserRecord:
    """One row of the users table.

    hashed_password is None for OAuth-only accounts (no local password).
    oauth_provider / oauth_subject are None until the account signs in via
    OAuth for the first time, at which point link_oauth() fills them in.
    """

    email: str
    id: int | None = None
    hashed_password: str | None = None  # None = OAuth-only account
    display_name: str | None = None
    photo_url: str | None = None
    email_verified: bool = False
    oauth_provider: str | None = None  # "github", "google", "oidc"
    oauth_subject: str | None = None  # provider's stable user ID
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True

    def to_identity(self) -> Identity:
        return Identity(
            uid=str(self.id),
            email=self.email,
            email_verified=self.email_verified,
            display_name=self.display_name,
            photo_url=self.photo_url,
            provider="local",
            oauth_provider=self.oauth_provider,
            created_at=self.created_at,
            last_login_at=self.last_login or None,
        )
