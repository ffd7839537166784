"""
core/runtime.py -- Assembles one StateStore + ActionGateway pair ("the shell").

Two ways in:
  build_shell(settings)  -- explicit construction; the HTTP app builds one per
                            application instance and keeps it on app.state.
  get_shell()            -- process-wide accessor for embedding code that wants
                            a single shared shell. Cached like get_settings();
                            tests call get_shell.cache_clear() for a fresh one.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from core.config import Settings, get_settings
from core.gateway import ActionGateway
from core.intents import IntentRegistry, default_registry
from core.store import InstabilityPolicy, StateStore


@dataclass(frozen=True)
class Shell:
    store: StateStore
    gateway: ActionGateway

    @property
    def registry(self) -> IntentRegistry:
        return self.gateway.registry


def build_shell(settings: Settings, registry: IntentRegistry | None = None) -> Shell:
    store = StateStore(InstabilityPolicy.from_settings(settings))
    gateway = ActionGateway(
        store,
        registry if registry is not None else default_registry(),
        audit_capacity=settings.audit_capacity,
        tolerance_multiplier=settings.tolerance_multiplier,
    )
    return Shell(store=store, gateway=gateway)


@lru_cache
def get_shell() -> Shell:
    """Return the process-wide Shell, built from get_settings() on first call."""
    return build_shell(get_settings())
