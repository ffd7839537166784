"""
auth/observer.py -- Bridges provider auth events into the state store.

The provider pushes "current user or None" whenever the session changes. The
observer classifies each push against the previous one, writes the actor into
the auth sub-state, and routes the view:

  no user                                  -> View.LOGIN
  user with unverified email (if required) -> View.VERIFY_EMAIL
  otherwise                                -> View.MAIN_APP

These writes are direct store mutations, not gateway intents: they record what
the provider already did rather than asking permission to do something.

A logout push resets the store before routing to LOGIN, so a sign-out or an
account deletion leaves no form input, error or instability history behind.
A provider call that fails never pushes, and the store keeps its user.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

from auth.providers import AuthProvider
from core.models import Identity, View
from core.store import StateStore

logger = logging.getLogger("authshell.auth.observer")


class AuthTransition(str, Enum):
    INITIALIZING = "initializing"
    USER_LOGGED_IN = "user_logged_in"
    USER_LOGGED_OUT = "user_logged_out"
    USER_STATE_REFRESHED = "user_state_refreshed"
    EMAIL_VERIFIED = "email_verified"
    NO_CHANGE = "no_change"


TransitionListener = Callable[[Identity | None, AuthTransition], None]


def classify_transition(
    previous: Identity | None, current: Identity | None, first_event: bool = False
) -> AuthTransition:
    if previous is None and current is None:
        return AuthTransition.INITIALIZING if first_event else AuthTransition.NO_CHANGE
    if previous is None:
        return AuthTransition.USER_LOGGED_IN
    if current is None:
        return AuthTransition.USER_LOGGED_OUT
    if previous.uid != current.uid:
        return AuthTransition.USER_LOGGED_IN
    if not previous.email_verified and current.email_verified:
        return AuthTransition.EMAIL_VERIFIED
    if previous != current:
        return AuthTransition.USER_STATE_REFRESHED
    return AuthTransition.NO_CHANGE


class AuthStateObserver:
    """Subscribes to a provider and keeps the store's auth/ui state in step.

    Usage:
        observer = AuthStateObserver(store, provider)
        observer.start()
        ...
        observer.stop()
    """

    def __init__(self, store: StateStore, provider: AuthProvider, require_email_verification: bool = True) -> None:
        self._store = store
        self._provider = provider
        self._require_verification = require_email_verification
        self._unsubscribe: Callable[[], None] | None = None
        self._previous: Identity | None = None
        self._first_event = True
        self._listeners: list[tuple[object, TransitionListener]] = []

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self.started:
            logger.debug("Observer already started")
            return
        self._first_event = True
        self._unsubscribe = self._provider.on_auth_state_change(self._handle)
        logger.info("Auth state observer started (provider=%s)", self._provider.name)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("Auth state observer stopped")

    def subscribe(self, listener: TransitionListener) -> Callable[[], None]:
        """Receive (user, transition) after the store has been updated.

        If auth is already resolved the listener is called right away with
        NO_CHANGE so late subscribers see the current user.
        """
        token = object()
        self._listeners.append((token, listener))
        if self._store.get_state().auth.auth_resolved:
            self._call(listener, self._previous, AuthTransition.NO_CHANGE)

        def unsubscribe() -> None:
            self._listeners[:] = [entry for entry in self._listeners if entry[0] is not token]

        return unsubscribe

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _handle(self, user: Identity | None) -> None:
        transition = classify_transition(self._previous, user, self._first_event)
        self._first_event = False
        self._previous = user
        logger.debug("Auth transition: %s", transition.value)

        verified = bool(user and user.email_verified)
        self._store.update_auth(
            current_actor=user,
            is_authenticated=user is not None,
            is_verified=verified,
            auth_resolved=True,
            last_event_time=datetime.now(timezone.utc),
        )

        if transition in (AuthTransition.USER_LOGGED_IN, AuthTransition.EMAIL_VERIFIED):
            if self._store.get_state().error.has_error:
                self._store.clear_error()
        elif transition == AuthTransition.USER_LOGGED_OUT:
            self._store.reset()

        self._store.update_ui(current_view=self._route(user), is_loading=False)

        for _, listener in list(self._listeners):
            self._call(listener, user, transition)

    def _route(self, user: Identity | None) -> View:
        if user is None:
            return View.LOGIN
        if self._require_verification and not user.email_verified:
            return View.VERIFY_EMAIL
        return View.MAIN_APP

    def _call(self, listener: TransitionListener, user: Identity | None, transition: AuthTransition) -> None:
        try:
            listener(user, transition)
        except Exception:
            logger.exception("Auth transition listener %r raised; continuing", listener)
