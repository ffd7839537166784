"""
tests/test_api_routes.py -- Integration tests for the auth and shell API routes.

These tests exercise the full stack: FastAPI routing -> AuthService ->
ActionGateway -> LocalAuthProvider/UserStore -> AuthStateObserver -> StateStore
-> response model serialization.

The app holds one shell per process, so every test starts by signing out and
uses its own email address.

Coverage:
  - Sign-up, login, logout, /me; status mapping for provider errors
  - Password reset and email verification via tokens read from the outbox
  - Profile, email, password changes and account deletion
  - Shell state, form writes (password fields hidden), navigation, error clearing
  - Intent listing with live admission verdicts, audit log and stats
  - Public endpoint: GET /providers
"""

from __future__ import annotations

from fastapi.testclient import TestClient

PASSWORD = "secret123"


def _sign_out(client: TestClient) -> None:
    """Return the shared shell to the signed-out state (401 when already signed out)."""
    client.post("/api/v1/auth/logout")


def _signup(client: TestClient, email: str, display_name: str | None = None):
    _sign_out(client)
    resp = client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": PASSWORD, "display_name": display_name},
    )
    assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
    return resp


def _mail_token(client: TestClient, email: str, purpose: str) -> str:
    message = client.app.state.mailer.latest(email, purpose)
    assert message is not None, f"No {purpose} mail for {email}"
    return message.token


def _state(client: TestClient) -> dict:
    return client.get("/api/v1/shell/state").json()


class TestSignedOut:
    """Requests that need an actor must fail cleanly when nobody is signed in."""

    def test_me_unauthenticated(self, api_client: TestClient) -> None:
        """GET /auth/me with nobody signed in must return 401 with a structured error."""
        _sign_out(api_client)
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "not_authenticated"

    def test_logout_unauthenticated(self, api_client: TestClient) -> None:
        """POST /auth/logout is gated by AUTH_REQUIRED."""
        _sign_out(api_client)
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 401
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "AUTH_REQUIRED"
        assert body["error"]["recovery"] == "sign_in"

    def test_profile_update_unauthenticated(self, api_client: TestClient) -> None:
        _sign_out(api_client)
        resp = api_client.patch("/api/v1/auth/profile", json={"display_name": "x"})
        assert resp.status_code == 401

    def test_state_routes_to_login(self, api_client: TestClient) -> None:
        """After sign-out the observer routes the shell to the login view."""
        _sign_out(api_client)
        state = _state(api_client)
        assert state["auth"]["is_authenticated"] is False
        assert state["auth"]["auth_resolved"] is True
        assert state["ui"]["current_view"] == "login"


class TestSignupAndLogin:
    def test_signup(self, api_client: TestClient) -> None:
        """POST /auth/signup signs the new user in and routes to verify_email."""
        resp = _signup(api_client, "signup@example.com", "Sig")
        body = resp.json()
        assert body["ok"] is True
        assert body["value"]["email"] == "signup@example.com"
        assert body["value"]["email_verified"] is False
        assert resp.headers["Cache-Control"] == "no-store"
        state = _state(api_client)
        assert state["auth"]["is_authenticated"] is True
        assert state["ui"]["current_view"] == "verify_email"

    def test_signup_duplicate_returns_409(self, api_client: TestClient) -> None:
        _signup(api_client, "dupe@example.com")
        resp = api_client.post("/api/v1/auth/signup", json={"email": "DUPE@example.com", "password": PASSWORD})
        assert resp.status_code == 409
        assert resp.json()["error"]["provider_code"] == "EMAIL_ALREADY_IN_USE"

    def test_signup_weak_password_returns_400(self, api_client: TestClient) -> None:
        _sign_out(api_client)
        resp = api_client.post("/api/v1/auth/signup", json={"email": "weak@example.com", "password": "123"})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["provider_code"] == "WEAK_PASSWORD"
        assert error["user_message"] == "Password should be at least 6 characters."

    def test_signup_validation_error(self, api_client: TestClient) -> None:
        """A missing password is rejected by the request model before any intent runs."""
        resp = api_client.post("/api/v1/auth/signup", json={"email": "x@example.com"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_invalid_credentials(self, api_client: TestClient) -> None:
        """Wrong password returns 401 and records the error in the shell state."""
        _signup(api_client, "login-bad@example.com")
        _sign_out(api_client)
        resp = api_client.post("/api/v1/auth/login", json={"email": "login-bad@example.com", "password": "wrong-one"})
        assert resp.status_code == 401
        body = resp.json()
        assert body["error"]["code"] == "EXECUTION_FAILED"
        assert body["error"]["provider_code"] == "INVALID_CREDENTIALS"
        assert resp.headers["Cache-Control"] == "no-store"
        error = _state(api_client)["error"]
        assert error["has_error"] is True
        assert error["source"] == "auth_login"

    def test_login_and_me(self, api_client: TestClient) -> None:
        """Valid credentials sign in; GET /auth/me returns the actor."""
        _signup(api_client, "login-ok@example.com", "Lou")
        _sign_out(api_client)
        resp = api_client.post("/api/v1/auth/login", json={"email": "login-ok@example.com", "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        assert resp.json()["value"]["display_name"] == "Lou"
        me = api_client.get("/api/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == "login-ok@example.com"
        assert _state(api_client)["error"]["has_error"] is False

    def test_logout(self, api_client: TestClient) -> None:
        _signup(api_client, "logout@example.com")
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        state = _state(api_client)
        assert state["auth"]["current_actor"] is None
        assert state["ui"]["current_view"] == "login"


class TestRecoveryAndVerification:
    def test_password_reset_flow(self, api_client: TestClient) -> None:
        email = "reset@example.com"
        _signup(api_client, email)
        _sign_out(api_client)
        assert api_client.post("/api/v1/auth/password-reset", json={"email": email}).status_code == 200
        token = _mail_token(api_client, email, "password_reset")
        resp = api_client.post(
            "/api/v1/auth/password-reset/confirm", json={"token": token, "new_password": "brand-new-pw"}
        )
        assert resp.status_code == 200, resp.text
        login = api_client.post("/api/v1/auth/login", json={"email": email, "password": "brand-new-pw"})
        assert login.status_code == 200

    def test_password_reset_unknown_email(self, api_client: TestClient) -> None:
        """Unknown emails get the same 200 so the endpoint does not reveal accounts."""
        _sign_out(api_client)
        resp = api_client.post("/api/v1/auth/password-reset", json={"email": "nobody@example.com"})
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

    def test_password_reset_bad_token(self, api_client: TestClient) -> None:
        _sign_out(api_client)
        resp = api_client.post(
            "/api/v1/auth/password-reset/confirm", json={"token": "garbage", "new_password": "brand-new-pw"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["provider_code"] == "INVALID_ACTION_CODE"

    def test_email_verification_flow(self, api_client: TestClient) -> None:
        email = "verify@example.com"
        _signup(api_client, email)
        assert api_client.post("/api/v1/auth/verification").status_code == 200
        token = _mail_token(api_client, email, "verify_email")
        resp = api_client.post("/api/v1/auth/verification/confirm", json={"token": token})
        assert resp.status_code == 200, resp.text
        state = _state(api_client)
        assert state["auth"]["is_verified"] is True
        assert state["ui"]["current_view"] == "main_app"

    def test_reload(self, api_client: TestClient) -> None:
        _signup(api_client, "reload@example.com")
        resp = api_client.post("/api/v1/auth/reload")
        assert resp.status_code == 200
        assert resp.json()["value"]["email"] == "reload@example.com"


class TestAccount:
    def test_update_profile(self, api_client: TestClient) -> None:
        _signup(api_client, "profile@example.com")
        resp = api_client.patch("/api/v1/auth/profile", json={"display_name": "Pro File"})
        assert resp.status_code == 200
        assert resp.json()["value"]["display_name"] == "Pro File"
        assert api_client.get("/api/v1/auth/me").json()["display_name"] == "Pro File"

    def test_update_email(self, api_client: TestClient) -> None:
        _signup(api_client, "old-address@example.com")
        resp = api_client.patch("/api/v1/auth/email", json={"new_email": "new-address@example.com"})
        assert resp.status_code == 200
        assert resp.json()["value"]["email"] == "new-address@example.com"
        assert _mail_token(api_client, "new-address@example.com", "verify_email")

    def test_update_password(self, api_client: TestClient) -> None:
        email = "pw-change@example.com"
        _signup(api_client, email)
        resp = api_client.patch("/api/v1/auth/password", json={"new_password": "changed-pw"})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        _sign_out(api_client)
        login = api_client.post("/api/v1/auth/login", json={"email": email, "password": "changed-pw"})
        assert login.status_code == 200

    def test_delete_account(self, api_client: TestClient) -> None:
        email = "delete-me@example.com"
        _signup(api_client, email)
        resp = api_client.delete("/api/v1/auth/account")
        assert resp.status_code == 200
        assert _state(api_client)["ui"]["current_view"] == "login"
        login = api_client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
        assert login.status_code == 401


class TestShellRoutes:
    def test_form_write_hides_passwords(self, api_client: TestClient) -> None:
        """PATCH /shell/form stores the values but never echoes password fields."""
        resp = api_client.patch(
            "/api/v1/shell/form", json={"fields": {"email": "typed@example.com", "password": "hunter22"}}
        )
        assert resp.status_code == 200
        form = resp.json()["ui"]["form_fields"]
        assert form["email"] == "typed@example.com"
        assert "password" not in form
        assert "confirm_password" not in form
        assert api_client.app.state.store.get_state().ui.form_fields["password"] == "hunter22"

    def test_form_write_rejects_empty(self, api_client: TestClient) -> None:
        resp = api_client.patch("/api/v1/shell/form", json={"fields": {}})
        assert resp.status_code == 422

    def test_navigate(self, api_client: TestClient) -> None:
        _sign_out(api_client)
        resp = api_client.post("/api/v1/shell/navigate", json={"view": "signup"})
        assert resp.status_code == 200
        assert resp.json()["value"] == "signup"
        ui = _state(api_client)["ui"]
        assert ui["current_view"] == "signup"
        assert ui["previous_view"] == "login"

    def test_navigate_main_app_signed_out(self, api_client: TestClient) -> None:
        _sign_out(api_client)
        resp = api_client.post("/api/v1/shell/navigate", json={"view": "main_app"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTH_REQUIRED"

    def test_navigate_loading_rejected(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/shell/navigate", json={"view": "loading"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "invalid_view"

    def test_navigate_unknown_view(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/shell/navigate", json={"view": "nowhere"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_clear_error(self, api_client: TestClient) -> None:
        _sign_out(api_client)
        api_client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "whatever"})
        assert _state(api_client)["error"]["has_error"] is True
        resp = api_client.delete("/api/v1/shell/error")
        assert resp.status_code == 200
        assert _state(api_client)["error"]["has_error"] is False

    def test_intents(self, api_client: TestClient) -> None:
        """GET /shell/intents lists every declaration with the gateway's current verdict."""
        _sign_out(api_client)
        resp = api_client.get("/api/v1/shell/intents")
        assert resp.status_code == 200
        intents = {item["name"]: item for item in resp.json()}
        assert len(intents) == 26
        assert intents["NAVIGATE_TO_MAIN_APP"]["allowed"] is False
        assert intents["NAVIGATE_TO_MAIN_APP"]["reason"] == "Authentication required"
        assert intents["AUTH_LOGIN_WITH_EMAIL"]["allowed"] is True

    def test_intents_by_category(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/shell/intents", params={"category": "navigation"})
        assert resp.status_code == 200
        assert len(resp.json()) == 5
        assert {item["category"] for item in resp.json()} == {"navigation"}

    def test_audit_newest_first(self, api_client: TestClient) -> None:
        _sign_out(api_client)
        api_client.post("/api/v1/shell/navigate", json={"view": "forgot_password"})
        resp = api_client.get("/api/v1/shell/audit", params={"limit": 2})
        assert resp.status_code == 200
        entries = resp.json()
        assert len(entries) == 2
        assert entries[0]["intent"] == "NAVIGATE_TO_FORGOT_PASSWORD"
        assert entries[0]["succeeded"] is True

    def test_audit_limit_validated(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/shell/audit", params={"limit": 0}).status_code == 422

    def test_audit_stats(self, api_client: TestClient) -> None:
        stats = api_client.get("/api/v1/shell/audit/stats").json()
        assert stats["total"] > 0
        assert stats["succeeded"] + stats["failed"] == stats["total"]
        assert 0.0 <= stats["success_rate"] <= 100.0


class TestOAuthRoutes:
    def test_providers_public(self, api_client: TestClient) -> None:
        """GET /auth/providers needs no session and lists nothing when OAuth is unconfigured."""
        resp = api_client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_unknown_provider_redirect(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/oauth/github", follow_redirects=False)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "unknown_provider"

    def test_unknown_provider_callback(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/oauth/github/callback")
        assert resp.status_code == 404
