"""
auth/service.py -- Auth intent service: every user-facing auth action as a gated intent.

Each public coroutine wraps exactly one provider call (or store write) in
ActionGateway.execute() under its declared Intent and returns the IntentResult.
Callers never see exceptions from here; they branch on result.ok and show
result.error via auth.errors.describe_result().

The store is reset by AuthStateObserver when the provider pushes "no user", not
here, so a failed sign-out or deletion leaves the signed-in snapshot intact.
"""

from __future__ import annotations

import logging

from auth.providers import AuthProvider
from core.gateway import ActionGateway, IntentResult
from core.intents import Intent
from core.models import Identity, View
from core.store import StateStore

logger = logging.getLogger("authshell.auth.service")

_NAVIGATION_INTENTS: dict[View, Intent] = {
    View.LOGIN: Intent.NAVIGATE_TO_LOGIN,
    View.SIGNUP: Intent.NAVIGATE_TO_SIGNUP,
    View.MAIN_APP: Intent.NAVIGATE_TO_MAIN_APP,
    View.FORGOT_PASSWORD: Intent.NAVIGATE_TO_FORGOT_PASSWORD,
    View.VERIFY_EMAIL: Intent.NAVIGATE_TO_VERIFY_EMAIL,
}


class AuthService:
    def __init__(self, gateway: ActionGateway, store: StateStore, provider: AuthProvider) -> None:
        self.gateway = gateway
        self.store = store
        self.provider = provider

    # ------------------------------------------------------------------
    # Auth gate
    # ------------------------------------------------------------------

    async def login_with_email(self, email: str, password: str) -> IntentResult:
        return await self.gateway.execute(
            Intent.AUTH_LOGIN_WITH_EMAIL,
            lambda: self.provider.sign_in_with_email(email, password),
        )

    async def signup_with_email(self, email: str, password: str, display_name: str | None = None) -> IntentResult:
        return await self.gateway.execute(
            Intent.AUTH_SIGNUP_WITH_EMAIL,
            lambda: self.provider.sign_up_with_email(email, password, display_name),
        )

    async def sign_in_with_oauth(self, provider_name: str, token: dict) -> IntentResult:
        return await self.gateway.execute(
            Intent.AUTH_SIGNIN_WITH_OAUTH,
            lambda: self.provider.sign_in_with_oauth(provider_name, token),
        )

    async def sign_out(self) -> IntentResult:
        return await self.gateway.execute(Intent.AUTH_SIGNOUT, self.provider.sign_out)

    async def send_password_reset(self, email: str) -> IntentResult:
        return await self.gateway.execute(
            Intent.AUTH_SEND_PASSWORD_RESET,
            lambda: self.provider.send_password_reset(email),
        )

    async def confirm_password_reset(self, token: str, new_password: str) -> IntentResult:
        return await self.gateway.execute(
            Intent.AUTH_CONFIRM_PASSWORD_RESET,
            lambda: self.provider.confirm_password_reset(token, new_password),
        )

    async def send_verification_email(self) -> IntentResult:
        return await self.gateway.execute(
            Intent.AUTH_SEND_EMAIL_VERIFICATION,
            self.provider.send_email_verification,
        )

    async def confirm_email_verification(self, token: str) -> IntentResult:
        return await self.gateway.execute(
            Intent.AUTH_CONFIRM_EMAIL_VERIFICATION,
            lambda: self.provider.confirm_email_verification(token),
        )

    async def reload_user(self) -> IntentResult:
        return await self.gateway.execute(Intent.AUTH_RELOAD_USER, self.provider.reload_user)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def update_profile(self, display_name: str | None = None, photo_url: str | None = None) -> IntentResult:
        return await self.gateway.execute(
            Intent.IDENTITY_UPDATE_PROFILE,
            lambda: self.provider.update_profile(display_name=display_name, photo_url=photo_url),
        )

    async def update_email(self, new_email: str) -> IntentResult:
        return await self.gateway.execute(
            Intent.IDENTITY_UPDATE_EMAIL,
            lambda: self.provider.update_email(new_email),
        )

    async def update_password(self, new_password: str) -> IntentResult:
        return await self.gateway.execute(
            Intent.IDENTITY_UPDATE_PASSWORD,
            lambda: self.provider.update_password(new_password),
        )

    async def delete_account(self) -> IntentResult:
        return await self.gateway.execute(Intent.IDENTITY_DELETE_ACCOUNT, self.provider.delete_account)

    # ------------------------------------------------------------------
    # Memory / navigation
    # ------------------------------------------------------------------

    async def navigate(self, view: View) -> IntentResult:
        """Switch the current view through its NAVIGATE_TO_* intent.

        View.LOADING has no intent; only the observer puts the shell there.
        """
        view = View(view)
        intent = _NAVIGATION_INTENTS.get(view)
        if intent is None:
            raise ValueError(f"No navigation intent for view {view.value!r}")
        logger.debug("Navigate to %s via %s", view.value, intent.value)

        async def _navigate() -> View:
            self.store.update_ui(current_view=view)
            return view

        return await self.gateway.execute(intent, _navigate)

    async def clear_error(self) -> IntentResult:
        async def _clear() -> None:
            self.store.clear_error()

        return await self.gateway.execute(Intent.MEMORY_CLEAR_ERROR_STATE, _clear)

    async def set_loading(self, is_loading: bool) -> IntentResult:
        async def _set() -> bool:
            self.store.update_ui(is_loading=is_loading)
            return is_loading

        return await self.gateway.execute(Intent.MEMORY_SET_LOADING_STATE, _set)

    # ------------------------------------------------------------------
    # Reads (no gateway round-trip)
    # ------------------------------------------------------------------

    def current_user(self) -> Identity | None:
        return self.store.get_state().auth.current_actor

    def is_authenticated(self) -> bool:
        return self.store.get_state().auth.is_authenticated

    def is_email_verified(self) -> bool:
        return self.store.get_state().auth.is_verified
