"""
core/gateway.py -- Action gateway: the single choke point for every mutating intent.

Admission pipeline (short-circuits on the first failing gate):
  1. Existence      -- the intent must be declared in the registry.
  2. Authorization  -- intents that require an actor need auth.is_authenticated.
  3. Stability      -- smoothed instability must not exceed
                       tolerance * tolerance_multiplier.
  4. Execution      -- TRANSITIONING while the operation runs; STABLE on success,
                       DRIFTING plus a recorded store error on failure.

Results are values, never exceptions: execute() always returns an IntentResult.
The one exception is asyncio.CancelledError, which is audited and re-raised so
the caller's cancellation is honoured.

Rejected admissions never touch the store; the snapshot a caller held before
the call is the same object afterwards.

Every evaluation lands in a bounded audit ring (oldest entries evicted first).

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from core.intents import Intent, IntentRegistry, default_registry, intent_name
from core.models import ErrorSource, Identity, Stability
from core.store import StateStore

logger = logging.getLogger("authshell.gateway")

Operation = Callable[[], Awaitable[Any]]


class ErrorCode(str, Enum):
    INTENT_NOT_DECLARED = "INTENT_NOT_DECLARED"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INSTABILITY_EXCEEDED = "INSTABILITY_EXCEEDED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    UNKNOWN = "UNKNOWN"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GatewayError:
    code: ErrorCode
    message: str
    intent_name: str
    timestamp: datetime
    # Machine-readable code carried by the provider exception, if any.
    provider_code: str | None = None


@dataclass(frozen=True)
class IntentResult:
    ok: bool
    value: Any = None
    error: GatewayError | None = None
    instability_after: float = 0.0


@dataclass(frozen=True)
class Admission:
    allowed: bool
    reason: str | None = None
    code: ErrorCode | None = None


@dataclass(frozen=True)
class AuditEntry:
    intent_name: str
    succeeded: bool
    duration_ms: float
    timestamp: datetime
    failure_code: ErrorCode | None = None
    # False for admission-time rejections; the operation never ran.
    admitted: bool = True


@dataclass(frozen=True)
class AuditStats:
    total: int
    succeeded: int
    failed: int
    success_rate: float  # percent, 0-100
    average_duration_ms: float


# ---------------------------------------------------------------------------
# Error source mapping
# ---------------------------------------------------------------------------

# First matching prefix wins.
_SOURCE_PREFIXES: tuple[tuple[str, ErrorSource], ...] = (
    ("AUTH_LOGIN", ErrorSource.AUTH_LOGIN),
    ("AUTH_SIGNIN", ErrorSource.AUTH_LOGIN),
    ("AUTH_SIGNUP", ErrorSource.AUTH_SIGNUP),
    ("AUTH_SIGNOUT", ErrorSource.AUTH_SIGNOUT),
    ("AUTH_SEND_PASSWORD", ErrorSource.AUTH_PASSWORD_RESET),
    ("AUTH_CONFIRM_PASSWORD", ErrorSource.AUTH_PASSWORD_RESET),
    ("AUTH_SEND_EMAIL", ErrorSource.AUTH_EMAIL_VERIFICATION),
    ("AUTH_CONFIRM_EMAIL", ErrorSource.AUTH_EMAIL_VERIFICATION),
    ("STORAGE_UPLOAD", ErrorSource.STORAGE_UPLOAD),
    ("STORAGE_DELETE", ErrorSource.STORAGE_DELETE),
)


def error_source_for(name: str) -> ErrorSource:
    """Map an intent name to the ErrorSource shown alongside its failures."""
    for prefix, source in _SOURCE_PREFIXES:
        if name.startswith(prefix):
            return source
    return ErrorSource.UNKNOWN


def _provider_code(exc: BaseException) -> str | None:
    code = getattr(exc, "code", None)
    code = getattr(code, "value", code)
    return code if isinstance(code, str) else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class ActionGateway:
    """Validates, executes and audits intents against a StateStore.

    Usage:
        gateway = ActionGateway(store)
        result = await gateway.execute(Intent.AUTH_SIGNOUT, provider.sign_out)
        if not result.ok:
            print(result.error.code, result.error.message)
    """

    def __init__(
        self,
        store: StateStore,
        registry: IntentRegistry | None = None,
        *,
        audit_capacity: int = 100,
        tolerance_multiplier: float = 2.0,
    ) -> None:
        if audit_capacity < 1:
            raise ValueError("audit_capacity must be >= 1")
        if tolerance_multiplier <= 0:
            raise ValueError("tolerance_multiplier must be > 0")
        self.store = store
        self.registry = registry if registry is not None else default_registry()
        self.tolerance_multiplier = tolerance_multiplier
        self._log: deque[AuditEntry] = deque(maxlen=audit_capacity)
        self._tickets = itertools.count(1)
        self._in_flight: dict[int, tuple[str, float]] = {}

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def can_execute(self, intent: Intent | str) -> Admission:
        """Run the existence, authorization and stability gates without executing."""
        name = intent_name(intent)
        decl = self.registry.get(name)
        if decl is None:
            return Admission(False, f"Intent {name} is not declared", ErrorCode.INTENT_NOT_DECLARED)

        if decl.requires_authenticated_actor and not self.store.get_state().auth.is_authenticated:
            return Admission(False, "Authentication required", ErrorCode.AUTH_REQUIRED)

        instability = self.store.get_smoothed_instability()
        limit = decl.instability_tolerance * self.tolerance_multiplier
        if instability > limit:
            return Admission(
                False,
                f"System instability too high ({instability:.3f} > {limit:.3f})",
                ErrorCode.INSTABILITY_EXCEEDED,
            )
        return Admission(True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, intent: Intent | str, operation: Operation) -> IntentResult:
        """Admit, run and audit one intent. Never raises except on cancellation."""
        name = intent_name(intent)
        admission = self.can_execute(name)
        logger.debug("Evaluating %s: allowed=%s", name, admission.allowed)

        if not admission.allowed:
            logger.info("Rejected %s [%s]: %s", name, admission.code.value, admission.reason)
            self._audit(name, False, 0.0, admission.code, admitted=False)
            error = GatewayError(code=admission.code, message=admission.reason, intent_name=name, timestamp=_now())
            return IntentResult(ok=False, error=error, instability_after=self.store.get_smoothed_instability())

        self.store.set_stability(Stability.TRANSITIONING)
        ticket = next(self._tickets)
        self._in_flight[ticket] = (name, time.monotonic())
        start = time.perf_counter()
        try:
            value = await operation()
        except asyncio.CancelledError:
            ms = (time.perf_counter() - start) * 1000
            logger.warning("Intent %s cancelled after %.1fms", name, ms)
            self.store.set_stability(Stability.DRIFTING)
            self._audit(name, False, ms, ErrorCode.UNKNOWN)
            raise
        except Exception as exc:
            ms = (time.perf_counter() - start) * 1000
            detail = str(exc) or type(exc).__name__
            error = GatewayError(
                code=ErrorCode.EXECUTION_FAILED,
                message=f"Intent {name} execution failed: {detail}",
                intent_name=name,
                timestamp=_now(),
                provider_code=_provider_code(exc),
            )
            self.store.set_error(ErrorCode.EXECUTION_FAILED.value, detail, error_source_for(name))
            self.store.set_stability(Stability.DRIFTING)
            self._audit(name, False, ms, ErrorCode.EXECUTION_FAILED)
            logger.warning("Intent %s failed after %.1fms: %s", name, ms, detail)
            return IntentResult(ok=False, error=error, instability_after=self.store.get_smoothed_instability())
        finally:
            self._in_flight.pop(ticket, None)

        ms = (time.perf_counter() - start) * 1000
        if isinstance(value, Identity):
            self.store.update_auth(
                current_actor=value,
                is_authenticated=True,
                is_verified=value.email_verified,
                auth_resolved=True,
                last_event_time=_now(),
            )
        self.store.set_stability(Stability.STABLE)
        self._audit(name, True, ms, None)
        logger.debug("Intent %s succeeded in %.1fms", name, ms)
        return IntentResult(ok=True, value=value, instability_after=self.store.get_smoothed_instability())

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def in_flight(self) -> list[tuple[str, float]]:
        """Return (intent_name, seconds_running) for every operation still awaiting."""
        now = time.monotonic()
        return [(name, now - started) for name, started in self._in_flight.values()]

    def mark_stalled(self, timeout_s: float) -> list[str]:
        """Flag the store STALLED when an in-flight operation outlives timeout_s.

        Only a TRANSITIONING store is flagged; a later completion moves it back
        to STABLE or DRIFTING as usual. Returns the names of stalled intents.
        """
        stalled = [name for name, elapsed in self.in_flight() if elapsed > timeout_s]
        if not stalled or self.store.get_state().stability != Stability.TRANSITIONING:
            return []
        logger.warning("Stalled intents (> %.1fs): %s", timeout_s, ", ".join(stalled))
        self.store.set_stability(Stability.STALLED)
        return stalled

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def get_log(self) -> tuple[AuditEntry, ...]:
        return tuple(self._log)

    def get_stats(self) -> AuditStats:
        total = len(self._log)
        succeeded = sum(1 for entry in self._log if entry.succeeded)
        if total == 0:
            return AuditStats(total=0, succeeded=0, failed=0, success_rate=0.0, average_duration_ms=0.0)
        return AuditStats(
            total=total,
            succeeded=succeeded,
            failed=total - succeeded,
            success_rate=succeeded / total * 100,
            average_duration_ms=sum(entry.duration_ms for entry in self._log) / total,
        )

    def _audit(
        self,
        name: str,
        succeeded: bool,
        duration_ms: float,
        failure_code: ErrorCode | None,
        admitted: bool = True,
    ) -> None:
        self._log.append(
            AuditEntry(
                intent_name=name,
                succeeded=succeeded,
                duration_ms=duration_ms,
                timestamp=_now(),
                failure_code=failure_code,
                admitted=admitted,
            )
        )
