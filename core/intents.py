"""
core/intents.py -- Declared intents: the closed set of actions the gateway will run.

Two layers:
  Intent          -- str Enum of the identifiers shipped with the shell. Callers
                     pass these to ActionGateway.execute() so typos fail at import.
  IntentRegistry  -- runtime lookup table (name -> IntentDeclaration). The
                     gateway only consults the registry, so a deployment can
                     add or tighten declarations without touching the enum.

Declarations are pure data. requires_authenticated_actor and
instability_tolerance drive admission; reversible, category and description
are informational and surface in the CLI and /shell/intents.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

# Unknown intents default to the most restrictive answer.
_UNKNOWN_TOLERANCE = 1.0


class IntentCategory(str, Enum):
    AUTH_GATE = "auth_gate"
    IDENTITY = "identity"
    MEMORY = "memory"
    STORAGE = "storage"
    NAVIGATION = "navigation"


class Intent(str, Enum):
    # Auth gate
    AUTH_LOGIN_WITH_EMAIL = "AUTH_LOGIN_WITH_EMAIL"
    AUTH_SIGNUP_WITH_EMAIL = "AUTH_SIGNUP_WITH_EMAIL"
    AUTH_SIGNIN_WITH_OAUTH = "AUTH_SIGNIN_WITH_OAUTH"
    AUTH_SIGNOUT = "AUTH_SIGNOUT"
    AUTH_SEND_PASSWORD_RESET = "AUTH_SEND_PASSWORD_RESET"
    AUTH_CONFIRM_PASSWORD_RESET = "AUTH_CONFIRM_PASSWORD_RESET"
    AUTH_SEND_EMAIL_VERIFICATION = "AUTH_SEND_EMAIL_VERIFICATION"
    AUTH_CONFIRM_EMAIL_VERIFICATION = "AUTH_CONFIRM_EMAIL_VERIFICATION"
    AUTH_RELOAD_USER = "AUTH_RELOAD_USER"
    # Identity
    IDENTITY_GET_CURRENT_USER = "IDENTITY_GET_CURRENT_USER"
    IDENTITY_UPDATE_PROFILE = "IDENTITY_UPDATE_PROFILE"
    IDENTITY_UPDATE_EMAIL = "IDENTITY_UPDATE_EMAIL"
    IDENTITY_UPDATE_PASSWORD = "IDENTITY_UPDATE_PASSWORD"
    IDENTITY_DELETE_ACCOUNT = "IDENTITY_DELETE_ACCOUNT"
    # Memory
    MEMORY_SET_AUTH_STATE = "MEMORY_SET_AUTH_STATE"
    MEMORY_SET_LOADING_STATE = "MEMORY_SET_LOADING_STATE"
    MEMORY_SET_ERROR_STATE = "MEMORY_SET_ERROR_STATE"
    MEMORY_CLEAR_ERROR_STATE = "MEMORY_CLEAR_ERROR_STATE"
    # Storage
    STORAGE_UPLOAD_PUBLIC_PHOTO = "STORAGE_UPLOAD_PUBLIC_PHOTO"
    STORAGE_UPLOAD_PRIVATE_FILE = "STORAGE_UPLOAD_PRIVATE_FILE"
    STORAGE_DELETE_FILE = "STORAGE_DELETE_FILE"
    # Navigation
    NAVIGATE_TO_LOGIN = "NAVIGATE_TO_LOGIN"
    NAVIGATE_TO_SIGNUP = "NAVIGATE_TO_SIGNUP"
    NAVIGATE_TO_MAIN_APP = "NAVIGATE_TO_MAIN_APP"
    NAVIGATE_TO_FORGOT_PASSWORD = "NAVIGATE_TO_FORGOT_PASSWORD"
    NAVIGATE_TO_VERIFY_EMAIL = "NAVIGATE_TO_VERIFY_EMAIL"


def intent_name(intent: Intent | str) -> str:
    """Normalize an Intent member or a raw string to the registry key."""
    if isinstance(intent, Intent):
        return intent.value
    return str(intent)


@dataclass(frozen=True)
class IntentDeclaration:
    name: str
    requires_authenticated_actor: bool
    instability_tolerance: float
    reversible: bool
    category: IntentCategory | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Intent name must not be empty")
        if self.instability_tolerance < 0:
            raise ValueError(f"{self.name}: instability_tolerance must be >= 0, got {self.instability_tolerance}")


class IntentRegistry:
    """Immutable name -> declaration table.

    Usage:
        registry = IntentRegistry(DEFAULT_INTENTS)
        decl = registry.get(Intent.AUTH_SIGNOUT)
        registry.requires_auth("SOMETHING_ELSE")   # True -- unknown is restricted
    """

    def __init__(self, declarations: Iterable[IntentDeclaration]) -> None:
        table: dict[str, IntentDeclaration] = {}
        for decl in declarations:
            if decl.name in table:
                raise ValueError(f"Duplicate intent declaration: {decl.name!r}")
            table[decl.name] = decl
        self._table = table

    def get(self, intent: Intent | str) -> IntentDeclaration | None:
        return self._table.get(intent_name(intent))

    def __contains__(self, intent: object) -> bool:
        if not isinstance(intent, str):
            return False
        return intent_name(intent) in self._table

    def __iter__(self) -> Iterator[IntentDeclaration]:
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)

    def requires_auth(self, intent: Intent | str) -> bool:
        decl = self.get(intent)
        return True if decl is None else decl.requires_authenticated_actor

    def tolerance(self, intent: Intent | str) -> float:
        decl = self.get(intent)
        return _UNKNOWN_TOLERANCE if decl is None else decl.instability_tolerance

    def by_category(self, category: IntentCategory) -> list[IntentDeclaration]:
        return [decl for decl in self._table.values() if decl.category == category]


# ---------------------------------------------------------------------------
# Shipped declarations
# ---------------------------------------------------------------------------


def _decl(
    intent: Intent,
    category: IntentCategory,
    requires_auth: bool,
    tolerance: float,
    reversible: bool,
    description: str,
) -> IntentDeclaration:
    return IntentDeclaration(
        name=intent.value,
        requires_authenticated_actor=requires_auth,
        instability_tolerance=tolerance,
        reversible=reversible,
        category=category,
        description=description,
    )


_AUTH = IntentCategory.AUTH_GATE
_IDENTITY = IntentCategory.IDENTITY
_MEMORY = IntentCategory.MEMORY
_STORAGE = IntentCategory.STORAGE
_NAV = IntentCategory.NAVIGATION

DEFAULT_INTENTS: tuple[IntentDeclaration, ...] = (
    _decl(Intent.AUTH_LOGIN_WITH_EMAIL, _AUTH, False, 0.10, True, "Sign in with email and password"),
    _decl(Intent.AUTH_SIGNUP_WITH_EMAIL, _AUTH, False, 0.20, False, "Create an account with email and password"),
    _decl(Intent.AUTH_SIGNIN_WITH_OAUTH, _AUTH, False, 0.10, True, "Sign in with an OAuth provider"),
    _decl(Intent.AUTH_SIGNOUT, _AUTH, True, 0.05, True, "End the current session"),
    _decl(Intent.AUTH_SEND_PASSWORD_RESET, _AUTH, False, 0.15, False, "Email a password reset link"),
    _decl(Intent.AUTH_CONFIRM_PASSWORD_RESET, _AUTH, False, 0.15, False, "Set a new password from a reset link"),
    _decl(Intent.AUTH_SEND_EMAIL_VERIFICATION, _AUTH, True, 0.10, False, "Email a verification link"),
    _decl(Intent.AUTH_CONFIRM_EMAIL_VERIFICATION, _AUTH, False, 0.10, False, "Mark an email verified from a link"),
    _decl(Intent.AUTH_RELOAD_USER, _AUTH, True, 0.02, True, "Refresh the signed-in user from the provider"),
    _decl(Intent.IDENTITY_GET_CURRENT_USER, _IDENTITY, False, 0.01, True, "Read the signed-in user"),
    _decl(Intent.IDENTITY_UPDATE_PROFILE, _IDENTITY, True, 0.10, True, "Change display name or photo"),
    _decl(Intent.IDENTITY_UPDATE_EMAIL, _IDENTITY, True, 0.30, False, "Change the account email"),
    _decl(Intent.IDENTITY_UPDATE_PASSWORD, _IDENTITY, True, 0.30, False, "Change the account password"),
    _decl(Intent.IDENTITY_DELETE_ACCOUNT, _IDENTITY, True, 0.05, False, "Permanently delete the account"),
    _decl(Intent.MEMORY_SET_AUTH_STATE, _MEMORY, False, 0.05, True, "Write the auth sub-state"),
    _decl(Intent.MEMORY_SET_LOADING_STATE, _MEMORY, False, 0.01, True, "Toggle the loading flag"),
    _decl(Intent.MEMORY_SET_ERROR_STATE, _MEMORY, False, 0.20, True, "Record a user-facing error"),
    _decl(Intent.MEMORY_CLEAR_ERROR_STATE, _MEMORY, False, 0.01, True, "Dismiss the current error"),
    _decl(Intent.STORAGE_UPLOAD_PUBLIC_PHOTO, _STORAGE, True, 0.20, True, "Upload a public profile photo"),
    _decl(Intent.STORAGE_UPLOAD_PRIVATE_FILE, _STORAGE, True, 0.25, True, "Upload a private file"),
    _decl(Intent.STORAGE_DELETE_FILE, _STORAGE, True, 0.30, False, "Delete a stored file"),
    _decl(Intent.NAVIGATE_TO_LOGIN, _NAV, False, 0.02, True, "Show the login view"),
    _decl(Intent.NAVIGATE_TO_SIGNUP, _NAV, False, 0.02, True, "Show the sign-up view"),
    _decl(Intent.NAVIGATE_TO_MAIN_APP, _NAV, True, 0.05, True, "Show the main application"),
    _decl(Intent.NAVIGATE_TO_FORGOT_PASSWORD, _NAV, False, 0.02, True, "Show the forgot-password view"),
    _decl(Intent.NAVIGATE_TO_VERIFY_EMAIL, _NAV, True, 0.02, True, "Show the verify-email view"),
)


def default_registry() -> IntentRegistry:
    return IntentRegistry(DEFAULT_INTENTS)
