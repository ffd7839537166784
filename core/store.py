"""
core/store.py -- Observable state store: the single source of truth for the shell.

Pattern: immutable snapshot + observer list.
  Every mutation builds a new ApplicationState with dataclasses.replace() and
  swaps the reference in one assignment, so get_state() never returns a
  half-applied update. Subscribers are called synchronously, in registration
  order, after the swap.

Instability metric:
  Each recorded mutation contributes one delta:
      auth_weight  if auth.is_authenticated flipped
    + view_weight  if ui.current_view changed
    + error_weight if error.has_error flipped
  Only the last `window` deltas are retained; get_smoothed_instability() is
  their mean. update_form() and set_stability() record nothing.

Failure containment:
  A subscriber that raises is logged and skipped. The mutation that triggered
  it has already been committed and the remaining subscribers still run.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from types import MappingProxyType

from core.config import Settings
from core.models import (
    FORM_FIELDS,
    ApplicationState,
    AuthState,
    ErrorSource,
    ErrorState,
    Stability,
    UIState,
    initial_state,
)

logger = logging.getLogger("authshell.store")

Subscriber = Callable[[ApplicationState], None]


@dataclass(frozen=True)
class InstabilityPolicy:
    auth_weight: float = 0.3
    view_weight: float = 0.1
    error_weight: float = 0.2
    window: int = 10
    log_threshold: float = 0.2

    def __post_init__(self) -> None:
        if self.window < 1:
            raise ValueError("window must be >= 1")
        if min(self.auth_weight, self.view_weight, self.error_weight) < 0:
            raise ValueError("instability weights must be non-negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> InstabilityPolicy:
        return cls(
            auth_weight=settings.instability_weight_auth,
            view_weight=settings.instability_weight_view,
            error_weight=settings.instability_weight_error,
            window=settings.instability_window,
            log_threshold=settings.drift_log_threshold,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StateStore:
    """Holds the current ApplicationState and notifies subscribers on change.

    Usage:
        store = StateStore()
        unsubscribe = store.subscribe(lambda state: print(state.ui.current_view))
        store.update_ui(current_view=View.LOGIN)
        unsubscribe()
    """

    def __init__(self, policy: InstabilityPolicy | None = None) -> None:
        self.policy = policy or InstabilityPolicy()
        self._state = initial_state()
        self._deltas: deque[float] = deque(maxlen=self.policy.window)
        # Each registration gets its own slot so the same callable can be
        # subscribed twice and unsubscribed independently.
        self._subscribers: list[tuple[object, Subscriber]] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_state(self) -> ApplicationState:
        return self._state

    def get_smoothed_instability(self) -> float:
        if not self._deltas:
            return 0.0
        return sum(self._deltas) / len(self._deltas)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_auth(self, **fields) -> ApplicationState:
        """Merge the given fields into the auth sub-state."""
        prev = self._state
        nxt = self._next(prev, auth=replace(prev.auth, **fields))
        self._commit(nxt, prev, record=True, notify=True)
        return nxt

    def update_ui(self, **fields) -> ApplicationState:
        """Merge the given fields into the ui sub-state.

        When current_view changes, the outgoing view becomes previous_view.
        Form fields are written through update_form() only.
        """
        if "form_fields" in fields:
            raise TypeError("form_fields cannot be set through update_ui(); use update_form()")
        prev = self._state
        new_view = fields.get("current_view", prev.ui.current_view)
        if new_view != prev.ui.current_view:
            fields["previous_view"] = prev.ui.current_view
        nxt = self._next(prev, ui=replace(prev.ui, **fields))
        self._commit(nxt, prev, record=True, notify=True)
        return nxt

    def update_form(self, **fields: str) -> ApplicationState:
        """Merge values into ui.form_fields without notifying subscribers.

        Keystroke-rate writes would otherwise fan out to every subscriber;
        readers pick up the new values on the next notifying mutation.
        """
        for key, value in fields.items():
            if not isinstance(value, str):
                raise TypeError(f"Form field {key!r} must be a string, got {type(value).__name__}")
        prev = self._state
        merged = MappingProxyType({**prev.ui.form_fields, **fields})
        nxt = self._next(prev, ui=replace(prev.ui, form_fields=merged))
        self._commit(nxt, prev, record=False, notify=False)
        return nxt

    def clear_form(self) -> ApplicationState:
        """Blank every form field. Same notification rule as update_form()."""
        blank = {key: "" for key in (*FORM_FIELDS, *self._state.ui.form_fields)}
        return self.update_form(**blank)

    def set_error(self, code: str, message: str, source: ErrorSource = ErrorSource.UNKNOWN) -> ApplicationState:
        source = ErrorSource(source)
        prev = self._state
        error = ErrorState(
            has_error=True,
            code=code,
            message=message,
            occurred_at=_now(),
            source=source,
        )
        nxt = self._next(prev, error=error, stability=Stability.DRIFTING)
        logger.warning("Error recorded [%s] from %s: %s", code, source.value, message)
        self._commit(nxt, prev, record=True, notify=True)
        return nxt

    def clear_error(self) -> ApplicationState:
        prev = self._state
        stability = Stability.STABLE if prev.auth.auth_resolved else Stability.TRANSITIONING
        nxt = self._next(prev, error=ErrorState(), stability=stability)
        self._commit(nxt, prev, record=True, notify=True)
        return nxt

    def set_stability(self, stability: Stability) -> ApplicationState:
        prev = self._state
        nxt = self._next(prev, stability=Stability(stability))
        self._commit(nxt, prev, record=False, notify=True)
        return nxt

    def reset(self) -> ApplicationState:
        """Restore the initial snapshot and forget instability history.

        The version keeps counting up. A store that is already pristine is
        left untouched, so calling reset() twice equals calling it once.
        """
        prev = self._state
        if self._is_pristine():
            return prev
        self._deltas.clear()
        self._state = replace(initial_state(prev.version + 1), updated_at=_now())
        logger.info("Store reset (version %d)", self._state.version)
        self._notify(self._state)
        return self._state

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes this registration."""
        token = object()
        self._subscribers.append((token, callback))

        def unsubscribe() -> None:
            self._subscribers[:] = [entry for entry in self._subscribers if entry[0] is not token]

        return unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next(self, prev: ApplicationState, **changes) -> ApplicationState:
        return replace(prev, version=prev.version + 1, updated_at=_now(), **changes)

    def _commit(self, nxt: ApplicationState, prev: ApplicationState, *, record: bool, notify: bool) -> None:
        self._state = nxt
        if record:
            self._record_delta(prev, nxt)
        if notify:
            self._notify(nxt)

    def _record_delta(self, prev: ApplicationState, nxt: ApplicationState) -> None:
        delta = 0.0
        if prev.auth.is_authenticated != nxt.auth.is_authenticated:
            delta += self.policy.auth_weight
        if prev.ui.current_view != nxt.ui.current_view:
            delta += self.policy.view_weight
        if prev.error.has_error != nxt.error.has_error:
            delta += self.policy.error_weight
        self._deltas.append(delta)
        if delta > self.policy.log_threshold:
            logger.info(
                "Drift spike %.2f at version %d (smoothed %.3f)",
                delta,
                nxt.version,
                self.get_smoothed_instability(),
            )

    def _notify(self, state: ApplicationState) -> None:
        # Copy so callbacks may unsubscribe while we iterate.
        for _, callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                logger.exception("State subscriber %r raised; continuing", callback)

    def _is_pristine(self) -> bool:
        state = self._state
        return (
            not self._deltas
            and state.stability == Stability.INITIALIZING
            and state.auth == AuthState()
            and state.ui == UIState()
            and state.error == ErrorState()
        )
