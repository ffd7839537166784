"""
auth/errors.py -- Provider error taxonomy and the user-facing message table.

ProviderError is the one exception type adapters raise. Its `code` attribute is
picked up by the gateway as GatewayError.provider_code, so the HTTP layer and
describe_result() can key on it without parsing messages.

The message table is presentation data: it maps both provider codes and
gateway codes to a sentence and an optional recovery action the UI can offer.
"""

from __future__ import annotations

from enum import Enum

from core.gateway import IntentResult


class AuthErrorCode(str, Enum):
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_DISABLED = "USER_DISABLED"
    EMAIL_ALREADY_IN_USE = "EMAIL_ALREADY_IN_USE"
    EMAIL_ALREADY_VERIFIED = "EMAIL_ALREADY_VERIFIED"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    INVALID_ACTION_CODE = "INVALID_ACTION_CODE"
    NO_USER = "NO_USER"
    NETWORK_ERROR = "NETWORK_ERROR"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    OPERATION_NOT_ALLOWED = "OPERATION_NOT_ALLOWED"
    REQUIRES_RECENT_LOGIN = "REQUIRES_RECENT_LOGIN"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ProviderError(Exception):
    """Raised by provider adapters. str(exc) is the human-readable message."""

    def __init__(self, code: AuthErrorCode, message: str | None = None) -> None:
        self.code = AuthErrorCode(code)
        self.message = message or ERROR_MESSAGES[self.code.value][0]
        super().__init__(self.message)


# code -> (message, recovery action or None)
ERROR_MESSAGES: dict[str, tuple[str, str | None]] = {
    # Provider codes
    "INVALID_EMAIL": ("Please enter a valid email address.", None),
    "INVALID_CREDENTIALS": ("Incorrect email or password.", "reset_password"),
    "USER_NOT_FOUND": ("No account found with this email.", "sign_up"),
    "USER_DISABLED": ("This account has been disabled.", None),
    "EMAIL_ALREADY_IN_USE": ("An account with this email already exists.", "sign_in"),
    "EMAIL_ALREADY_VERIFIED": ("Your email address is already verified.", None),
    "WEAK_PASSWORD": ("Password should be at least 6 characters.", None),
    "INVALID_ACTION_CODE": ("This link is invalid or has expired.", "resend"),
    "NO_USER": ("You need to sign in first.", "sign_in"),
    "NETWORK_ERROR": ("Network error. Please check your connection.", "retry"),
    "TOO_MANY_REQUESTS": ("Too many attempts. Please try again later.", "retry"),
    "OPERATION_NOT_ALLOWED": ("This sign-in method is not enabled.", None),
    "REQUIRES_RECENT_LOGIN": ("Please sign in again to complete this action.", "sign_in"),
    "PROVIDER_ERROR": ("The sign-in provider returned an error.", "retry"),
    "UNKNOWN_ERROR": ("An unexpected error occurred. Please try again.", "retry"),
    # Gateway codes
    "INTENT_NOT_DECLARED": ("This action is not available.", None),
    "AUTH_REQUIRED": ("You need to sign in first.", "sign_in"),
    "INSTABILITY_EXCEEDED": ("The application is busy. Please try again in a moment.", "retry"),
    "EXECUTION_FAILED": ("The action could not be completed.", "retry"),
    "UNKNOWN": ("An unexpected error occurred. Please try again.", "retry"),
}


def describe_error(code: str | Enum | None) -> tuple[str, str | None]:
    """Return (message, recovery) for a provider or gateway code."""
    key = getattr(code, "value", code)
    return ERROR_MESSAGES.get(key, ERROR_MESSAGES["UNKNOWN_ERROR"])


def describe_result(result: IntentResult) -> tuple[str, str | None] | None:
    """Describe a failed IntentResult; None for a success."""
    if result.ok or result.error is None:
        return None
    return describe_error(result.error.provider_code or result.error.code)
