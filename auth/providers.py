"""
auth/providers.py -- The identity provider interface the shell talks to.

Pattern: Adapter. Each concrete provider (LocalAuthProvider today) translates a
backend's API into these calls. Every async operation either returns an
Identity (or None) or raises ProviderError -- never a backend-specific type.

State push: on_auth_state_change() delivers the current user (or None) right
away and again after every sign-in, sign-out, or change to the signed-in
user's record. AuthStateObserver is the intended subscriber.
"""

from __future__ import annotations

import abc
from collections.abc import Callable
from typing import TYPE_CHECKING

from core.config import Settings
from core.models import Identity

if TYPE_CHECKING:
    from auth.local import Mailer
    from auth.store import UserStore

AuthListener = Callable[[Identity | None], None]


class AuthProvider(abc.ABC):
    name: str = ""

    @abc.abstractmethod
    def current_user(self) -> Identity | None: ...

    @abc.abstractmethod
    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """Register a listener, invoke it with the current user, return an unsubscribe function."""

    # Email / password
    @abc.abstractmethod
    async def sign_in_with_email(self, email: str, password: str) -> Identity: ...

    @abc.abstractmethod
    async def sign_up_with_email(self, email: str, password: str, display_name: str | None = None) -> Identity: ...

    @abc.abstractmethod
    async def sign_in_with_oauth(self, provider: str, token: dict) -> Identity: ...

    @abc.abstractmethod
    async def sign_out(self) -> None: ...

    # Account recovery / verification
    @abc.abstractmethod
    async def send_password_reset(self, email: str) -> None: ...

    @abc.abstractmethod
    async def confirm_password_reset(self, token: str, new_password: str) -> None: ...

    @abc.abstractmethod
    async def send_email_verification(self) -> None: ...

    @abc.abstractmethod
    async def confirm_email_verification(self, token: str) -> None: ...

    # Profile
    @abc.abstractmethod
    async def reload_user(self) -> Identity: ...

    @abc.abstractmethod
    async def update_profile(self, display_name: str | None = None, photo_url: str | None = None) -> Identity: ...

    @abc.abstractmethod
    async def update_email(self, new_email: str) -> Identity: ...

    @abc.abstractmethod
    async def update_password(self, new_password: str) -> None: ...

    @abc.abstractmethod
    async def delete_account(self) -> None: ...


def get_provider(settings: Settings, user_store: UserStore, mailer: Mailer | None = None, oauth=None) -> AuthProvider:
    """Build the provider named by settings.auth_provider."""
    if settings.auth_provider == "local":
        from auth.local import LocalAuthProvider

        return LocalAuthProvider(
            user_store,
            mailer=mailer,
            oauth=oauth,
            allow_sign_up=settings.allow_sign_up,
            email_password_enabled=settings.email_password_enabled,
            token_expire_seconds=settings.action_token_expire_seconds,
            app_name=settings.app_name,
        )
    raise ValueError(f"Unsupported auth provider: {settings.auth_provider!r}")
