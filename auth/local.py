"""
auth/local.py -- Self-hosted identity provider backed by UserStore.

LocalAuthProvider implements every AuthProvider operation against the local
users table: email/password accounts (bcrypt), OAuth sign-in through the
authlib registry, and emailed action tokens for password reset and email
verification.

Session model: one signed-in account per provider instance, mirroring a
client-side SDK. State changes are pushed synchronously to listeners
registered with on_auth_state_change().

Security notes:
  [C1] Sign-in goes through authenticate_user() for timing equalization.
  Password reset for an unknown email succeeds silently so the endpoint does
       not reveal which emails are registered.
  Action tokens are single-purpose and bound to the email they were issued
       for (see auth/tokens.py).

Mail delivery is an external collaborator. OutboxMailer records and logs the
messages; deployments plug in a transport with the same send() method.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import httpx
from sqlalchemy.exc import IntegrityError

from auth.errors import AuthErrorCode, ProviderError
from auth.models import UserRecord
from auth.oauth import get_oauth_user_info
from auth.providers import AuthListener, AuthProvider
from auth.store import UserStore, normalize_email
from auth.tokens import (
    PURPOSE_PASSWORD_RESET,
    PURPOSE_VERIFY_EMAIL,
    authenticate_user,
    create_action_token,
    decode_action_token,
    hash_password,
)
from core.models import Identity

logger = logging.getLogger("authshell.auth.local")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

# ---------------------------------------------------------------------------
# Mail
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    body: str
    purpose: str
    token: str


OUTBOX_LIMIT = 100


class Mailer(Protocol):
    def send(self, message: MailMessage) -> None: ...


class OutboxMailer:
    """Keeps the most recent messages in memory and logs the recipient and subject.

    Older messages fall off once `limit` is reached, taking their tokens with them.
    """

    def __init__(self, limit: int = OUTBOX_LIMIT) -> None:
        self.outbox: deque[MailMessage] = deque(maxlen=limit)

    def send(self, message: MailMessage) -> None:
        self.outbox.append(message)
        logger.info("Mail queued to %s: %s", message.to, message.subject)

    def latest(self, to: str, purpose: str | None = None) -> MailMessage | None:
        """Most recent message for a recipient, optionally filtered by purpose."""
        for message in reversed(self.outbox):
            if message.to == normalize_email(to) and (purpose is None or message.purpose == purpose):
                return message
        return None


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate_email(email: str) -> str:
    email = normalize_email(email)
    if not _EMAIL_RE.match(email):
        raise ProviderError(AuthErrorCode.INVALID_EMAIL)
    return email


def _validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ProviderError(AuthErrorCode.WEAK_PASSWORD)


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class LocalAuthProvider(AuthProvider):
    """AuthProvider over a local UserStore.

    Usage:
        provider = LocalAuthProvider(UserStore(url), mailer=OutboxMailer())
        identity = await provider.sign_up_with_email("a@example.com", "secret1")
    """

    name = "local"

    def __init__(
        self,
        user_store: UserStore,
        mailer: Mailer | None = None,
        oauth=None,
        *,
        allow_sign_up: bool = True,
        email_password_enabled: bool = True,
        token_expire_seconds: int = 0,
        app_name: str = "AuthShell",
    ) -> None:
        self._users = user_store
        self.mailer = mailer if mailer is not None else OutboxMailer()
        self._oauth = oauth
        self._allow_sign_up = allow_sign_up
        self._email_password_enabled = email_password_enabled
        self._token_expire_seconds = token_expire_seconds
        self._app_name = app_name
        self._current: Identity | None = None
        self._current_id: int | None = None
        self._listeners: list[tuple[object, AuthListener]] = []

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def current_user(self) -> Identity | None:
        return self._current

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        token = object()
        self._listeners.append((token, callback))
        self._deliver(callback, self._current)

        def unsubscribe() -> None:
            self._listeners[:] = [entry for entry in self._listeners if entry[0] is not token]

        return unsubscribe

    def _deliver(self, callback: AuthListener, identity: Identity | None) -> None:
        try:
            callback(identity)
        except Exception:
            logger.exception("Auth state listener %r raised; continuing", callback)

    def _set_current(self, record: UserRecord | None) -> Identity | None:
        self._current_id = record.id if record is not None else None
        self._current = record.to_identity() if record is not None else None
        for _, callback in list(self._listeners):
            self._deliver(callback, self._current)
        return self._current

    def _require_current(self) -> UserRecord:
        if self._current_id is None:
            raise ProviderError(AuthErrorCode.NO_USER)
        record = self._users.get_by_id(self._current_id)
        if record is None:
            raise ProviderError(AuthErrorCode.USER_NOT_FOUND)
        return record

    def _refresh(self, user_id: int) -> Identity:
        return self._set_current(self._users.get_by_id(user_id))

    def _require_email_password(self) -> None:
        if not self._email_password_enabled:
            raise ProviderError(AuthErrorCode.OPERATION_NOT_ALLOWED, "Email/password sign-in is disabled.")

    # ------------------------------------------------------------------
    # Sign-in / sign-up / sign-out
    # ------------------------------------------------------------------

    async def sign_in_with_email(self, email: str, password: str) -> Identity:
        self._require_email_password()
        record = authenticate_user(self._users, email, password)
        if record is None:
            raise ProviderError(AuthErrorCode.INVALID_CREDENTIALS)
        if not record.is_active:
            raise ProviderError(AuthErrorCode.USER_DISABLED)
        self._users.update_last_login(record.id)
        logger.info("Signed in user %d", record.id)
        return self._refresh(record.id)

    async def sign_up_with_email(self, email: str, password: str, display_name: str | None = None) -> Identity:
        self._require_email_password()
        if not self._allow_sign_up:
            raise ProviderError(AuthErrorCode.OPERATION_NOT_ALLOWED, "Sign-up is disabled.")
        email = _validate_email(email)
        _validate_password(password)
        if self._users.get_by_email(email) is not None:
            raise ProviderError(AuthErrorCode.EMAIL_ALREADY_IN_USE)
        try:
            user_id = self._users.create_user(
                UserRecord(email=email, hashed_password=hash_password(password), display_name=display_name or None)
            )
        except IntegrityError:
            # A concurrent sign-up won the race for this email.
            raise ProviderError(AuthErrorCode.EMAIL_ALREADY_IN_USE) from None
        self._users.update_last_login(user_id)
        logger.info("Created user %d", user_id)
        self._send_verification(self._users.get_by_id(user_id))
        return self._refresh(user_id)

    async def sign_in_with_oauth(self, provider: str, token: dict) -> Identity:
        client = self._oauth.create_client(provider) if self._oauth is not None else None
        if client is None:
            raise ProviderError(AuthErrorCode.OPERATION_NOT_ALLOWED, f"OAuth provider {provider!r} is not configured.")
        try:
            profile = await get_oauth_user_info(client, provider, token)
        except httpx.HTTPError as exc:
            raise ProviderError(AuthErrorCode.NETWORK_ERROR, f"{provider} OAuth request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(AuthErrorCode.PROVIDER_ERROR, str(exc)) from exc

        record = self._users.get_by_oauth(provider, profile.subject)
        if record is None:
            record = self._users.get_by_email(profile.email)
            if record is not None:
                # The provider has verified this address [H1].
                self._users.link_oauth(record.id, provider, profile.subject)
                self._users.update_user(record.id, email_verified=True)
                logger.info("Linked %s identity to user %d", provider, record.id)
            else:
                if not self._allow_sign_up:
                    raise ProviderError(AuthErrorCode.OPERATION_NOT_ALLOWED, "Sign-up is disabled.")
                user_id = self._users.create_user(
                    UserRecord(
                        email=profile.email,
                        display_name=profile.display_name,
                        photo_url=profile.photo_url,
                        email_verified=True,
                        oauth_provider=provider,
                        oauth_subject=profile.subject,
                    )
                )
                logger.info("Created user %d from %s sign-in", user_id, provider)
            record = self._users.get_by_email(profile.email)

        if not record.is_active:
            raise ProviderError(AuthErrorCode.USER_DISABLED)
        self._users.update_last_login(record.id)
        return self._refresh(record.id)

    async def sign_out(self) -> None:
        if self._current_id is not None:
            logger.info("Signed out user %d", self._current_id)
        self._set_current(None)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def send_password_reset(self, email: str) -> None:
        record = self._users.get_by_email(_validate_email(email))
        if record is None or not record.is_active:
            logger.info("Password reset requested for an unknown or disabled account")
            return
        token = create_action_token(record.id, PURPOSE_PASSWORD_RESET, record.email, self._token_expire_seconds)
        self.mailer.send(
            MailMessage(
                to=record.email,
                subject=f"Reset your {self._app_name} password",
                body=f"Use this code to choose a new password: {token}",
                purpose=PURPOSE_PASSWORD_RESET,
                token=token,
            )
        )

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        record = self._record_for_token(token, PURPOSE_PASSWORD_RESET)
        _validate_password(new_password)
        self._users.update_user(record.id, hashed_password=hash_password(new_password))
        logger.info("Password reset for user %d", record.id)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def send_email_verification(self) -> None:
        record = self._require_current()
        if record.email_verified:
            raise ProviderError(AuthErrorCode.EMAIL_ALREADY_VERIFIED)
        self._send_verification(record)

    async def confirm_email_verification(self, token: str) -> None:
        record = self._record_for_token(token, PURPOSE_VERIFY_EMAIL)
        self._users.update_user(record.id, email_verified=True)
        logger.info("Email verified for user %d", record.id)
        if record.id == self._current_id:
            self._refresh(record.id)

    def _send_verification(self, record: UserRecord) -> None:
        token = create_action_token(record.id, PURPOSE_VERIFY_EMAIL, record.email, self._token_expire_seconds)
        self.mailer.send(
            MailMessage(
                to=record.email,
                subject=f"Verify your {self._app_name} email",
                body=f"Use this code to verify your email address: {token}",
                purpose=PURPOSE_VERIFY_EMAIL,
                token=token,
            )
        )

    def _record_for_token(self, token: str, purpose: str) -> UserRecord:
        payload = decode_action_token(token, purpose)
        if payload is None:
            raise ProviderError(AuthErrorCode.INVALID_ACTION_CODE)
        try:
            record = self._users.get_by_id(int(payload["sub"]))
        except ValueError:
            raise ProviderError(AuthErrorCode.INVALID_ACTION_CODE) from None
        # Email mismatch means the address changed after the token was issued.
        if record is None or record.email != normalize_email(payload["email"]):
            raise ProviderError(AuthErrorCode.INVALID_ACTION_CODE)
        return record

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def reload_user(self) -> Identity:
        record = self._require_current()
        if not record.is_active:
            raise ProviderError(AuthErrorCode.USER_DISABLED)
        return self._set_current(record)

    async def update_profile(self, display_name: str | None = None, photo_url: str | None = None) -> Identity:
        record = self._require_current()
        fields = {}
        if display_name is not None:
            fields["display_name"] = display_name
        if photo_url is not None:
            fields["photo_url"] = photo_url
        if fields:
            self._users.update_user(record.id, **fields)
        return self._refresh(record.id)

    async def update_email(self, new_email: str) -> Identity:
        record = self._require_current()
        new_email = _validate_email(new_email)
        if new_email == record.email:
            return self._refresh(record.id)
        if self._users.get_by_email(new_email) is not None:
            raise ProviderError(AuthErrorCode.EMAIL_ALREADY_IN_USE)
        self._users.update_user(record.id, email=new_email, email_verified=False)
        logger.info("Email changed for user %d", record.id)
        self._send_verification(self._users.get_by_id(record.id))
        return self._refresh(record.id)

    async def update_password(self, new_password: str) -> None:
        record = self._require_current()
        _validate_password(new_password)
        self._users.update_user(record.id, hashed_password=hash_password(new_password))
        logger.info("Password changed for user %d", record.id)

    async def delete_account(self) -> None:
        record = self._require_current()
        self._users.delete_user(record.id)
        logger.info("Deleted user %d", record.id)
        self._set_current(None)
