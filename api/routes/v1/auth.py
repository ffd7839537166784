"""
api/routes/v1/auth.py -- Auth intent endpoints.

Routes:
  POST   /api/v1/auth/login                       -- email/password sign-in
  POST   /api/v1/auth/signup                      -- create account, send verification
  POST   /api/v1/auth/logout                      -- end the session
  POST   /api/v1/auth/password-reset              -- email a reset token
  POST   /api/v1/auth/password-reset/confirm      -- set a new password from a token
  POST   /api/v1/auth/verification                -- (re)send the verification email
  POST   /api/v1/auth/verification/confirm        -- mark email verified from a token
  POST   /api/v1/auth/reload                      -- refresh the signed-in user
  PATCH  /api/v1/auth/profile                     -- display name / photo
  PATCH  /api/v1/auth/email                       -- change email (re-verification)
  PATCH  /api/v1/auth/password                    -- change password
  DELETE /api/v1/auth/account                     -- delete the signed-in account
  GET    /api/v1/auth/me                          -- current actor from the store
  GET    /api/v1/auth/providers                   -- configured OAuth providers
  GET    /api/v1/auth/oauth/{provider}            -- redirect to the provider
  GET    /api/v1/auth/oauth/{provider}/callback   -- code exchange + sign-in

Every mutating route goes through AuthService, i.e. through the action gateway.
Authorization is the gateway's AUTH_REQUIRED gate, not a FastAPI dependency.

Security:
  [H2] Credential-accepting routes are rate-limited (Settings.login_rate_limit).
  [M5] Cache-Control: no-store on responses to credential routes.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    EmailUpdate,
    IdentityResponse,
    LoginRequest,
    OAuthProviderInfo,
    PasswordResetConfirm,
    PasswordResetRequest,
    PasswordUpdate,
    ProfileUpdate,
    SignupRequest,
    VerificationConfirm,
)
from api.responses import intent_response
from auth.oauth import get_enabled_providers
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("authshell.api.auth")

router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _enabled_provider_names() -> set[str]:
    return {p["name"] for p in get_enabled_providers(get_settings())}


# ---------------------------------------------------------------------------
# Sign-in / sign-up / sign-out
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login")
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Sign in with email and password.

    Wrong email and wrong password produce the same INVALID_CREDENTIALS code.
    """
    result = await _service(request).login_with_email(body.email, body.password)
    return intent_response(result, no_store=True)


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/signup")
async def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account; the verification email is sent by the provider."""
    result = await _service(request).signup_with_email(body.email, body.password, body.display_name)
    return intent_response(result, no_store=True)


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    return intent_response(await _service(request).sign_out())


# ---------------------------------------------------------------------------
# Password reset / email verification
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] enumeration and mail-bombing mitigation
@router.post("/auth/password-reset")
async def request_password_reset(request: Request, body: PasswordResetRequest) -> JSONResponse:
    """Always 200 for a well-formed email, whether or not an account exists."""
    return intent_response(await _service(request).send_password_reset(body.email))


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/password-reset/confirm")
async def confirm_password_reset(request: Request, body: PasswordResetConfirm) -> JSONResponse:
    result = await _service(request).confirm_password_reset(body.token, body.new_password)
    return intent_response(result, no_store=True)


@router.post("/auth/verification")
async def send_verification(request: Request) -> JSONResponse:
    return intent_response(await _service(request).send_verification_email())


@router.post("/auth/verification/confirm")
async def confirm_verification(request: Request, body: VerificationConfirm) -> JSONResponse:
    return intent_response(await _service(request).confirm_email_verification(body.token))


@router.post("/auth/reload")
async def reload_user(request: Request) -> JSONResponse:
    return intent_response(await _service(request).reload_user())


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.patch("/auth/profile")
async def update_profile(request: Request, body: ProfileUpdate) -> JSONResponse:
    result = await _service(request).update_profile(display_name=body.display_name, photo_url=body.photo_url)
    return intent_response(result)


@router.patch("/auth/email")
async def update_email(request: Request, body: EmailUpdate) -> JSONResponse:
    return intent_response(await _service(request).update_email(body.new_email))


@limiter.limit(login_limit)  # [H2]
@router.patch("/auth/password")
async def update_password(request: Request, body: PasswordUpdate) -> JSONResponse:
    result = await _service(request).update_password(body.new_password)
    return intent_response(result, no_store=True)


@router.delete("/auth/account")
async def delete_account(request: Request) -> JSONResponse:
    return intent_response(await _service(request).delete_account())


@router.get("/auth/me", response_model=IdentityResponse)
async def me(request: Request) -> IdentityResponse:
    """Return the signed-in actor as recorded in the store; 401 when signed out."""
    actor = _service(request).current_user()
    if actor is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "not_authenticated", "message": "No user is signed in."},
        )
    return IdentityResponse.from_identity(actor)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers (empty list when none are set)."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(get_settings())]


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled list first so a spoofed
    name cannot select an arbitrary client.
    """
    if provider not in _enabled_provider_names():
        raise HTTPException(status_code=404, detail={"code": "unknown_provider", "message": "Unknown provider."})
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> JSONResponse:
    """Exchange the authorization code and sign in through AUTH_SIGNIN_WITH_OAUTH."""
    if provider not in _enabled_provider_names():
        raise HTTPException(status_code=404, detail={"code": "unknown_provider", "message": "Unknown provider."})
    client = request.app.state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        raise HTTPException(
            status_code=400,
            detail={"code": "oauth_failed", "message": "OAuth authentication failed. Please try again."},
        ) from None
    result = await _service(request).sign_in_with_oauth(provider, token)
    return intent_response(result, no_store=True)
