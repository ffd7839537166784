"""
tests/test_config.py -- Unit tests for core.config and core.runtime.

Covers:
  - SECRET_KEY policy: generated in debug, required in production, minimum length
  - Shell tuning fields validated and flowing into build_shell()
  - get_shell() caching
"""

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings
from core.intents import IntentDeclaration, IntentRegistry
from core.models import View
from core.runtime import build_shell, get_shell


class TestSecretKey:
    def test_debug_generates_key(self):
        settings = Settings(_env_file=None, debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self):
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(_env_file=None, debug=False, secret_key="")

    def test_short_key_rejected(self):
        with pytest.raises(ValidationError, match="at least 32"):
            Settings(_env_file=None, debug=False, secret_key="short")

    def test_explicit_key_kept(self):
        key = "k" * 40
        assert Settings(_env_file=None, debug=False, secret_key=key).secret_key == key


class TestShellSettings:
    @pytest.mark.parametrize(
        "field, value",
        [
            ("instability_window", 0),
            ("instability_weight_auth", -0.1),
            ("tolerance_multiplier", 0),
            ("audit_capacity", 0),
            ("stall_timeout_seconds", 0),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, debug=True, **{field: value})

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("INSTABILITY_WINDOW", "4")
        monkeypatch.setenv("TOLERANCE_MULTIPLIER", "3.5")
        settings = Settings(_env_file=None, debug=True)
        assert settings.instability_window == 4
        assert settings.tolerance_multiplier == 3.5

    def test_build_shell_uses_settings(self):
        settings = Settings(
            _env_file=None,
            debug=True,
            instability_window=3,
            instability_weight_view=0.7,
            audit_capacity=5,
            tolerance_multiplier=4.0,
        )
        shell = build_shell(settings)
        assert shell.store.policy.window == 3
        assert shell.store.policy.view_weight == 0.7
        assert shell.gateway.tolerance_multiplier == 4.0
        shell.store.update_ui(current_view=View.LOGIN)
        assert shell.store.get_smoothed_instability() == pytest.approx(0.7)

    def test_build_shell_custom_registry(self):
        registry = IntentRegistry(
            [IntentDeclaration(name="ONLY", requires_authenticated_actor=False, instability_tolerance=0.5, reversible=True)]
        )
        shell = build_shell(get_settings(), registry)
        assert shell.registry is registry
        assert len(shell.registry) == 1


def test_get_shell_is_cached():
    get_shell.cache_clear()
    try:
        first = get_shell()
        assert get_shell() is first
        assert first.store.get_state().version == 0
    finally:
        get_shell.cache_clear()
