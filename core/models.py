"""
core/models.py -- Shell state snapshot and the actor record it carries.

Every dataclass here is frozen. The store replaces the whole ApplicationState
on each mutation, so a reference handed to a reader never changes underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Stability(str, Enum):
    INITIALIZING = "initializing"
    STABLE = "stable"
    TRANSITIONING = "transitioning"
    DRIFTING = "drifting"
    STALLED = "stalled"


class View(str, Enum):
    LOADING = "loading"
    LOGIN = "login"
    SIGNUP = "signup"
    VERIFY_EMAIL = "verify_email"
    FORGOT_PASSWORD = "forgot_password"
    MAIN_APP = "main_app"


class ErrorSource(str, Enum):
    AUTH_LOGIN = "auth_login"
    AUTH_SIGNUP = "auth_signup"
    AUTH_SIGNOUT = "auth_signout"
    AUTH_PASSWORD_RESET = "auth_password_reset"
    AUTH_EMAIL_VERIFICATION = "auth_email_verification"
    STORAGE_UPLOAD = "storage_upload"
    STORAGE_DELETE = "storage_delete"
    NETWORK = "network"
    UNKNOWN = "unknown"


# Default form keys -- matches the login / signup / forgot-password forms.
FORM_FIELDS = ("email", "password", "confirm_password", "display_name")


def _blank_form() -> Mapping[str, str]:
    return MappingProxyType({name: "" for name in FORM_FIELDS})


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """Provider-neutral view of the signed-in user.

    Produced by provider adapters; the shell stores it as an opaque value and
    only reads email_verified when merging a successful intent result.
    """

    uid: str
    email: str | None = None
    email_verified: bool = False
    display_name: str | None = None
    photo_url: str | None = None
    provider: str = "local"
    oauth_provider: str | None = None  # "github", "google", "oidc"
    created_at: str | None = None
    last_login_at: str | None = None


# ---------------------------------------------------------------------------
# State sub-trees
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthState:
    current_actor: Identity | None = None
    is_authenticated: bool = False
    is_verified: bool = False
    auth_resolved: bool = False
    last_event_time: datetime | None = None


@dataclass(frozen=True)
class UIState:
    is_loading: bool = True
    current_view: View = View.LOADING
    previous_view: View | None = None
    form_fields: Mapping[str, str] = field(default_factory=_blank_form)


@dataclass(frozen=True)
class ErrorState:
    has_error: bool = False
    code: str | None = None
    message: str | None = None
    occurred_at: datetime | None = None
    source: ErrorSource | None = None


@dataclass(frozen=True)
class ApplicationState:
    """One immutable snapshot of the shell.

    version is a logical clock: it strictly increases with every mutation,
    including reset().
    """

    version: int = 0
    updated_at: datetime | None = None
    stability: Stability = Stability.INITIALIZING
    auth: AuthState = field(default_factory=AuthState)
    ui: UIState = field(default_factory=UIState)
    error: ErrorState = field(default_factory=ErrorState)


def initial_state(version: int = 0) -> ApplicationState:
    """Return the pristine snapshot every store starts from."""
    return ApplicationState(version=version)
