"""
API request and response models for AuthShell REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in core/models.py and
core/gateway.py, which own the internal representation. The from_* factory
classmethods keep the mapping colocated with the output model rather than
scattered across route handlers.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.errors import describe_error
from core.gateway import AuditEntry, AuditStats, IntentResult
from core.intents import IntentDeclaration
from core.models import ApplicationState, Identity, View

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    # max_length keeps input below bcrypt's 72-byte truncation boundary in practice.
    password: str = Field(min_length=1, max_length=64)


class SignupRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=64)
    display_name: Optional[str] = Field(default=None, max_length=100)


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


class PasswordResetConfirm(BaseModel):
    token: str = Field(min_length=1, max_length=2048)
    new_password: str = Field(min_length=1, max_length=64)


class VerificationConfirm(BaseModel):
    token: str = Field(min_length=1, max_length=2048)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: Optional[str] = Field(default=None, max_length=100)
    photo_url: Optional[str] = Field(default=None, max_length=2048)


class EmailUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    new_email: str = Field(min_length=3, max_length=255)


class PasswordUpdate(BaseModel):
    new_password: str = Field(min_length=1, max_length=64)


class FormUpdate(BaseModel):
    """Partial form write. Values are kept verbatim (no whitespace stripping)."""

    fields: dict[str, str] = Field(min_length=1, max_length=20)


class NavigateRequest(BaseModel):
    view: View


# ---------------------------------------------------------------------------
# Shared response pieces
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str
    email: Optional[str]
    email_verified: bool
    display_name: Optional[str]
    photo_url: Optional[str]
    provider: str
    oauth_provider: Optional[str]
    created_at: Optional[str]
    last_login_at: Optional[str]

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            uid=identity.uid,
            email=identity.email,
            email_verified=identity.email_verified,
            display_name=identity.display_name,
            photo_url=identity.photo_url,
            provider=identity.provider,
            oauth_provider=identity.oauth_provider,
            created_at=identity.created_at,
            last_login_at=identity.last_login_at,
        )


class IntentErrorBody(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    intent: str
    provider_code: Optional[str] = None
    user_message: str
    recovery: Optional[str] = None


class IntentResultResponse(BaseModel):
    """HTTP rendering of core.gateway.IntentResult."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    value: Any = None
    error: Optional[IntentErrorBody] = None
    instability_after: float

    @classmethod
    def from_result(cls, result: IntentResult) -> "IntentResultResponse":
        value = result.value
        if isinstance(value, Identity):
            value = IdentityResponse.from_identity(value).model_dump()
        elif hasattr(value, "value"):
            value = value.value  # str Enum, e.g. View
        error = None
        if result.error is not None:
            user_message, recovery = describe_error(result.error.provider_code or result.error.code)
            error = IntentErrorBody(
                code=result.error.code.value,
                message=result.error.message,
                intent=result.error.intent_name,
                provider_code=result.error.provider_code,
                user_message=user_message,
                recovery=recovery,
            )
        return cls(ok=result.ok, value=value, error=error, instability_after=result.instability_after)


# ---------------------------------------------------------------------------
# Shell state
# ---------------------------------------------------------------------------


class AuthStateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_actor: Optional[IdentityResponse]
    is_authenticated: bool
    is_verified: bool
    auth_resolved: bool
    last_event_time: Optional[str]


class UIStateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_loading: bool
    current_view: str
    previous_view: Optional[str]
    # Password fields are never echoed back.
    form_fields: dict[str, str]


class ErrorStateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_error: bool
    code: Optional[str]
    message: Optional[str]
    occurred_at: Optional[str]
    source: Optional[str]


class StateResponse(BaseModel):
    """Response for GET /api/v1/shell/state."""

    model_config = ConfigDict(frozen=True)

    version: int
    updated_at: Optional[str]
    stability: str
    instability: float
    auth: AuthStateResponse
    ui: UIStateResponse
    error: ErrorStateResponse

    @classmethod
    def from_state(cls, state: ApplicationState, instability: float) -> "StateResponse":
        actor = state.auth.current_actor
        return cls(
            version=state.version,
            updated_at=state.updated_at.isoformat() if state.updated_at else None,
            stability=state.stability.value,
            instability=instability,
            auth=AuthStateResponse(
                current_actor=IdentityResponse.from_identity(actor) if actor is not None else None,
                is_authenticated=state.auth.is_authenticated,
                is_verified=state.auth.is_verified,
                auth_resolved=state.auth.auth_resolved,
                last_event_time=state.auth.last_event_time.isoformat() if state.auth.last_event_time else None,
            ),
            ui=UIStateResponse(
                is_loading=state.ui.is_loading,
                current_view=state.ui.current_view.value,
                previous_view=state.ui.previous_view.value if state.ui.previous_view else None,
                form_fields={k: v for k, v in state.ui.form_fields.items() if "password" not in k},
            ),
            error=ErrorStateResponse(
                has_error=state.error.has_error,
                code=state.error.code,
                message=state.error.message,
                occurred_at=state.error.occurred_at.isoformat() if state.error.occurred_at else None,
                source=state.error.source.value if state.error.source else None,
            ),
        )


# ---------------------------------------------------------------------------
# Intents and audit
# ---------------------------------------------------------------------------


class IntentInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    category: Optional[str]
    description: str
    requires_authenticated_actor: bool
    instability_tolerance: float
    reversible: bool
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def from_declaration(cls, decl: IntentDeclaration, allowed: bool, reason: Optional[str]) -> "IntentInfo":
        return cls(
            name=decl.name,
            category=decl.category.value if decl.category else None,
            description=decl.description,
            requires_authenticated_actor=decl.requires_authenticated_actor,
            instability_tolerance=decl.instability_tolerance,
            reversible=decl.reversible,
            allowed=allowed,
            reason=reason,
        )


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: str
    succeeded: bool
    admitted: bool
    duration_ms: float
    timestamp: str
    failure_code: Optional[str]

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            intent=entry.intent_name,
            succeeded=entry.succeeded,
            admitted=entry.admitted,
            duration_ms=round(entry.duration_ms, 3),
            timestamp=entry.timestamp.isoformat(),
            failure_code=entry.failure_code.value if entry.failure_code else None,
        )


class AuditStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    succeeded: int
    failed: int
    success_rate: float
    average_duration_ms: float

    @classmethod
    def from_stats(cls, stats: AuditStats) -> "AuditStatsResponse":
        return cls(
            total=stats.total,
            succeeded=stats.succeeded,
            failed=stats.failed,
            success_rate=round(stats.success_rate, 2),
            average_duration_ms=round(stats.average_duration_ms, 3),
        )


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


class OAuthProviderInfo(BaseModel):
    """Public metadata for one configured OAuth provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=lambda: {"app": "ok"})
