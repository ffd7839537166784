"""
auth/tokens.py -- Password hashing and signed single-purpose action tokens.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The _DUMMY_HASH
       constant enables timing equalization in authenticate_user() so response
       time does not reveal whether an email is registered [C1].

  Action tokens: python-jose HS256 JWTs signed with SECRET_KEY. Each token
       carries a `purpose` claim ("password_reset" or "verify_email") and the
       email it was issued for. decode_action_token() rejects a token presented
       for the wrong purpose, so a verification link can never reset a
       password. Binding the email means a link issued before an email change
       stops working after it.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup [M6].

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import UserRecord
    from auth.store import UserStore

logger = logging.getLogger("authshell.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

PURPOSE_PASSWORD_RESET = "password_reset"
PURPOSE_VERIFY_EMAIL = "verify_email"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt ignores bytes past 72; the API layer caps password length well
    below that with a Pydantic max_length.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Timing equalization dummy hash [C1], computed once at import.
_DUMMY_HASH: str = hash_password("authshell_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> UserRecord | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the account exists [C1]. Returns the
    record on success (including disabled accounts, so the caller can report
    USER_DISABLED), None on unknown email or wrong password.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Action tokens
# ---------------------------------------------------------------------------


def create_action_token(user_id: int, purpose: str, email: str, expire_seconds: int = 0) -> str:
    """Encode a signed single-purpose token.

    Args:
        user_id:        Account the action applies to.
        purpose:        PURPOSE_PASSWORD_RESET or PURPOSE_VERIFY_EMAIL.
        email:          Email the token was issued for.
        expire_seconds: Lifetime; 0 uses Settings.action_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.action_token_expire_seconds
    payload = {
        "sub": str(user_id),
        "purpose": purpose,
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_action_token(token: str, purpose: str) -> dict | None:
    """Verify a token for the given purpose. Returns the payload or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != purpose or "sub" not in payload or "email" not in payload:
        logger.info("Rejected action token: wrong purpose or missing claims")
        return None
    return payload
