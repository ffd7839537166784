"""
auth/oauth.py -- Authlib OAuth/OIDC provider registry and profile normalization.

Only providers with both client ID and secret configured get registered.
build_oauth_registry() is called once per application (api/main.py lifespan);
LocalAuthProvider receives the registry and asks it for a client per sign-in.

Security notes:
  [H1] Email verification is mandatory. get_oauth_user_info() raises ValueError
       if the provider does not confirm the email is verified. An unverified
       email could belong to an attacker who added a victim's address without
       confirming it, and would otherwise be linked to the victim's account.

  The OAuth state parameter (CSRF protection) is handled by authlib via
  Starlette SessionMiddleware between redirect and callback.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.
  oidc   -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from core.config import Settings

logger = logging.getLogger("authshell.auth.oauth")


@dataclass(frozen=True)
class OAuthProfile:
    """Provider-neutral result of a successful OAuth exchange."""

    email: str
    subject: str
    display_name: str | None = None
    photo_url: str | None = None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def _github_enabled(cfg: Settings) -> bool:
    return bool(cfg.github_client_id and cfg.github_client_secret)


def _google_enabled(cfg: Settings) -> bool:
    return bool(cfg.google_client_id and cfg.google_client_secret)


def _oidc_enabled(cfg: Settings) -> bool:
    return bool(cfg.oidc_client_id and cfg.oidc_client_secret and cfg.oidc_discovery_url)


def build_oauth_registry(cfg: Settings) -> OAuth:
    """Return an authlib OAuth registry holding every configured provider."""
    oauth = OAuth()

    # GitHub -- static endpoints (no OIDC discovery document)
    if _github_enabled(cfg):
        oauth.register(
            name="github",
            client_id=cfg.github_client_id,
            client_secret=cfg.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    if _google_enabled(cfg):
        oauth.register(
            name="google",
            client_id=cfg.google_client_id,
            client_secret=cfg.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    if _oidc_enabled(cfg):
        oauth.register(
            name="oidc",
            client_id=cfg.oidc_client_id,
            client_secret=cfg.oidc_client_secret,
            server_metadata_url=cfg.oidc_discovery_url,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Generic OIDC provider registered (display name: %s)", cfg.oidc_display_name)

    return oauth


def get_enabled_providers(cfg: Settings) -> list[dict]:
    """Return [{"name", "label"}] for every configured provider, in display order."""
    providers: list[dict] = []
    if _github_enabled(cfg):
        providers.append({"name": "github", "label": "GitHub"})
    if _google_enabled(cfg):
        providers.append({"name": "google", "label": "Google"})
    if _oidc_enabled(cfg):
        providers.append({"name": "oidc", "label": cfg.oidc_display_name})
    return providers


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_user_info(client, provider: str, token: dict) -> OAuthProfile:
    """Normalize a provider token response into an OAuthProfile.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: "github", "google", or "oidc".
        token:    The token dict returned by authlib after code exchange.

    Raises:
        ValueError: If a verified email cannot be confirmed [H1], or the
            provider is unknown.
    """
    if provider == "github":
        return await _get_github_user_info(client, token)
    elif provider in ("google", "oidc"):
        return _get_oidc_user_info(token, provider)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_user_info(client, token: dict) -> OAuthProfile:
    """GitHub needs two calls: /user for the stable numeric ID and profile,
    /user/emails for the primary verified address [H1].
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email = next(
        (entry["email"] for entry in emails_resp.json() if entry.get("primary") and entry.get("verified")),
        None,
    )
    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before signing in."
        )

    return OAuthProfile(
        email=email,
        subject=str(profile["id"]),
        display_name=profile.get("name") or profile.get("login"),
        photo_url=profile.get("avatar_url"),
    )


def _get_oidc_user_info(token: dict, provider: str) -> OAuthProfile:
    """Google and generic OIDC put the claims in token["userinfo"].

    A missing email_verified claim counts as unverified [H1].
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            f"{provider} OAuth: email is not verified. "
            "The provider must confirm email ownership before sign-in is allowed."
        )

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return OAuthProfile(
        email=email,
        subject=subject,
        display_name=userinfo.get("name"),
        photo_url=userinfo.get("picture"),
    )
