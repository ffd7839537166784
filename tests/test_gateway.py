"""
tests/test_gateway.py -- Unit tests for core.gateway.ActionGateway.

Covers:
  - Admission gates in order: existence, authorization, stability
  - Rejections never run the operation and never touch the store
  - Success path: STABLE, Identity results merged into auth
  - Failure path: error recorded with the mapped source, DRIFTING, provider code kept
  - Cancellation audited and re-raised
  - Bounded audit log (FIFO eviction) and stats
  - Stall detection for long-running operations
  - Concurrent executes
"""

import asyncio

import pytest

from core.gateway import ActionGateway, ErrorCode, error_source_for
from core.intents import Intent, IntentDeclaration, IntentRegistry
from core.models import ErrorSource, Identity, Stability
from core.store import InstabilityPolicy, StateStore


class OperationSpy:
    """Async callable that counts invocations and returns a fixed value."""

    def __init__(self, value=None):
        self.calls = 0
        self.value = value

    async def __call__(self):
        self.calls += 1
        return self.value


class CodedError(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code


def _registry(*decls):
    return IntentRegistry(decls)


def _decl(name, requires_auth=False, tolerance=1.0):
    return IntentDeclaration(
        name=name,
        requires_authenticated_actor=requires_auth,
        instability_tolerance=tolerance,
        reversible=True,
    )


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------


class TestAdmission:
    def test_undeclared_intent_rejected_without_running(self, store, gateway):
        spy = OperationSpy()
        before = store.get_state()
        result = asyncio.run(gateway.execute("NOT_AN_INTENT", spy))
        assert result.ok is False
        assert result.error.code == ErrorCode.INTENT_NOT_DECLARED
        assert result.error.message == "Intent NOT_AN_INTENT is not declared"
        assert spy.calls == 0
        assert store.get_state() is before

    def test_auth_required_rejected_without_running(self, store, gateway):
        spy = OperationSpy()
        before = store.get_state()
        result = asyncio.run(gateway.execute(Intent.AUTH_SIGNOUT, spy))
        assert result.ok is False
        assert result.error.code == ErrorCode.AUTH_REQUIRED
        assert result.error.message == "Authentication required"
        assert result.error.intent_name == "AUTH_SIGNOUT"
        assert spy.calls == 0
        assert store.get_state() is before

    def test_auth_required_admitted_when_authenticated(self, store, gateway):
        store.update_auth(is_authenticated=True)
        assert gateway.can_execute(Intent.AUTH_SIGNOUT).allowed is True

    def test_existence_checked_before_auth(self, gateway):
        admission = gateway.can_execute("NOT_AN_INTENT")
        assert admission.code == ErrorCode.INTENT_NOT_DECLARED

    def test_instability_at_limit_is_admitted(self):
        """The stability gate is strict: instability equal to the limit passes."""
        store = StateStore(InstabilityPolicy(error_weight=0.2))
        gateway = ActionGateway(store, _registry(_decl("X", tolerance=0.1)))
        store.set_error("E", "boom")
        assert store.get_smoothed_instability() == pytest.approx(0.2)
        assert gateway.can_execute("X").allowed is True

    def test_instability_over_limit_rejected(self):
        store = StateStore(InstabilityPolicy(error_weight=0.25))
        gateway = ActionGateway(store, _registry(_decl("X", tolerance=0.1)))
        store.set_error("E", "boom")
        spy = OperationSpy()
        before = store.get_state()
        result = asyncio.run(gateway.execute("X", spy))
        assert result.error.code == ErrorCode.INSTABILITY_EXCEEDED
        assert result.error.message.startswith("System instability too high")
        assert result.instability_after == pytest.approx(0.25)
        assert spy.calls == 0
        assert store.get_state() is before

    def test_tolerance_multiplier(self):
        store = StateStore(InstabilityPolicy(error_weight=0.25))
        gateway = ActionGateway(store, _registry(_decl("X", tolerance=0.1)), tolerance_multiplier=3.0)
        store.set_error("E", "boom")
        assert gateway.can_execute("X").allowed is True

    def test_rejection_is_audited(self, gateway):
        asyncio.run(gateway.execute(Intent.AUTH_SIGNOUT, OperationSpy()))
        (entry,) = gateway.get_log()
        assert entry.intent_name == "AUTH_SIGNOUT"
        assert entry.succeeded is False
        assert entry.admitted is False
        assert entry.failure_code == ErrorCode.AUTH_REQUIRED
        assert entry.duration_ms == 0.0

    @pytest.mark.parametrize("kwargs", [{"audit_capacity": 0}, {"tolerance_multiplier": 0}])
    def test_invalid_construction(self, store, kwargs):
        with pytest.raises(ValueError):
            ActionGateway(store, **kwargs)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestExecution:
    def test_success_sets_stable(self, store, gateway):
        result = asyncio.run(gateway.execute(Intent.NAVIGATE_TO_LOGIN, OperationSpy("done")))
        assert result.ok is True
        assert result.value == "done"
        assert result.error is None
        assert store.get_state().stability == Stability.STABLE
        assert gateway.get_log()[-1].succeeded is True

    def test_stability_transitioning_while_running(self, store, gateway):
        seen = []

        async def op():
            seen.append(store.get_state().stability)

        asyncio.run(gateway.execute(Intent.NAVIGATE_TO_LOGIN, op))
        assert seen == [Stability.TRANSITIONING]

    def test_identity_result_merged_into_auth(self, store, gateway):
        user = Identity(uid="7", email="a@example.com", email_verified=True)
        result = asyncio.run(gateway.execute(Intent.AUTH_LOGIN_WITH_EMAIL, OperationSpy(user)))
        auth = store.get_state().auth
        assert auth.current_actor == user
        assert auth.is_authenticated is True
        assert auth.is_verified is True
        assert auth.auth_resolved is True
        assert result.instability_after == pytest.approx(0.3)

    def test_failure_records_error_and_drifts(self, store, gateway):
        async def op():
            raise RuntimeError("bad credentials")

        result = asyncio.run(gateway.execute(Intent.AUTH_LOGIN_WITH_EMAIL, op))
        assert result.ok is False
        assert result.error.code == ErrorCode.EXECUTION_FAILED
        assert result.error.message == "Intent AUTH_LOGIN_WITH_EMAIL execution failed: bad credentials"
        assert result.error.provider_code is None
        state = store.get_state()
        assert state.stability == Stability.DRIFTING
        assert state.error.has_error is True
        assert state.error.code == "EXECUTION_FAILED"
        assert state.error.message == "bad credentials"
        assert state.error.source == ErrorSource.AUTH_LOGIN
        assert result.instability_after == pytest.approx(0.2)

    def test_failure_keeps_provider_code(self, gateway):
        async def op():
            raise CodedError("EMAIL_ALREADY_IN_USE", "taken")

        result = asyncio.run(gateway.execute(Intent.AUTH_SIGNUP_WITH_EMAIL, op))
        assert result.error.provider_code == "EMAIL_ALREADY_IN_USE"

    def test_failure_without_message_uses_type_name(self, store, gateway):
        async def op():
            raise KeyError

        asyncio.run(gateway.execute(Intent.NAVIGATE_TO_LOGIN, op))
        assert store.get_state().error.message == "KeyError"
        assert store.get_state().error.source == ErrorSource.UNKNOWN

    def test_failure_audited(self, gateway):
        async def op():
            raise RuntimeError("x")

        asyncio.run(gateway.execute(Intent.NAVIGATE_TO_LOGIN, op))
        entry = gateway.get_log()[-1]
        assert entry.succeeded is False
        assert entry.admitted is True
        assert entry.failure_code == ErrorCode.EXECUTION_FAILED

    def test_cancellation_reraised_and_audited(self, store, gateway):
        async def scenario():
            release = asyncio.Event()

            async def op():
                await release.wait()

            task = asyncio.create_task(gateway.execute(Intent.NAVIGATE_TO_LOGIN, op))
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert store.get_state().stability == Stability.DRIFTING
        entry = gateway.get_log()[-1]
        assert entry.failure_code == ErrorCode.UNKNOWN
        assert gateway.in_flight() == []

    def test_concurrent_executes(self, store, gateway):
        async def scenario():
            async def op(value):
                await asyncio.sleep(0)
                return value

            return await asyncio.gather(
                gateway.execute(Intent.NAVIGATE_TO_LOGIN, lambda: op(1)),
                gateway.execute(Intent.NAVIGATE_TO_SIGNUP, lambda: op(2)),
            )

        first, second = asyncio.run(scenario())
        assert (first.value, second.value) == (1, 2)
        assert len(gateway.get_log()) == 2
        assert store.get_state().stability == Stability.STABLE


@pytest.mark.parametrize(
    "name, source",
    [
        ("AUTH_LOGIN_WITH_EMAIL", ErrorSource.AUTH_LOGIN),
        ("AUTH_SIGNIN_WITH_OAUTH", ErrorSource.AUTH_LOGIN),
        ("AUTH_SIGNUP_WITH_EMAIL", ErrorSource.AUTH_SIGNUP),
        ("AUTH_SIGNOUT", ErrorSource.AUTH_SIGNOUT),
        ("AUTH_SEND_PASSWORD_RESET", ErrorSource.AUTH_PASSWORD_RESET),
        ("AUTH_CONFIRM_PASSWORD_RESET", ErrorSource.AUTH_PASSWORD_RESET),
        ("AUTH_SEND_EMAIL_VERIFICATION", ErrorSource.AUTH_EMAIL_VERIFICATION),
        ("STORAGE_UPLOAD_PUBLIC_PHOTO", ErrorSource.STORAGE_UPLOAD),
        ("STORAGE_DELETE_FILE", ErrorSource.STORAGE_DELETE),
        ("IDENTITY_UPDATE_EMAIL", ErrorSource.UNKNOWN),
    ],
)
def test_error_source_for(name, source):
    assert error_source_for(name) == source


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class TestAudit:
    def test_log_bounded_fifo(self, store):
        names = [f"INTENT_{i:03d}" for i in range(101)]
        gateway = ActionGateway(store, _registry(*(_decl(n) for n in names)))

        async def scenario():
            for name in names:
                await gateway.execute(name, OperationSpy())

        asyncio.run(scenario())
        log = gateway.get_log()
        assert len(log) == 100
        assert log[0].intent_name == "INTENT_001"
        assert log[-1].intent_name == "INTENT_100"

    def test_custom_capacity(self, store):
        gateway = ActionGateway(store, audit_capacity=2)

        async def scenario():
            for _ in range(3):
                await gateway.execute(Intent.NAVIGATE_TO_LOGIN, OperationSpy())

        asyncio.run(scenario())
        assert len(gateway.get_log()) == 2

    def test_empty_stats(self, gateway):
        stats = gateway.get_stats()
        assert stats.total == 0
        assert stats.success_rate == 0.0
        assert stats.average_duration_ms == 0.0

    def test_stats(self, gateway):
        async def fail():
            raise RuntimeError("x")

        async def scenario():
            await gateway.execute(Intent.NAVIGATE_TO_LOGIN, OperationSpy())
            await gateway.execute(Intent.NAVIGATE_TO_SIGNUP, fail)

        asyncio.run(scenario())
        stats = gateway.get_stats()
        assert stats.total == 2
        assert stats.succeeded == 1
        assert stats.failed == 1
        assert stats.success_rate == pytest.approx(50.0)
        assert stats.average_duration_ms >= 0.0

    def test_get_log_is_a_copy(self, gateway):
        log = gateway.get_log()
        asyncio.run(gateway.execute(Intent.NAVIGATE_TO_LOGIN, OperationSpy()))
        assert log == ()


# ---------------------------------------------------------------------------
# Stall detection
# ---------------------------------------------------------------------------


class TestStall:
    def test_long_running_intent_marks_stalled(self, store, gateway):
        observed = {}

        async def scenario():
            release = asyncio.Event()

            async def op():
                await release.wait()
                return "late"

            task = asyncio.create_task(gateway.execute(Intent.NAVIGATE_TO_LOGIN, op))
            await asyncio.sleep(0.02)
            observed["in_flight"] = [name for name, _ in gateway.in_flight()]
            observed["stalled"] = gateway.mark_stalled(0.001)
            observed["stability"] = store.get_state().stability
            release.set()
            return await task

        result = asyncio.run(scenario())
        assert observed["in_flight"] == ["NAVIGATE_TO_LOGIN"]
        assert observed["stalled"] == ["NAVIGATE_TO_LOGIN"]
        assert observed["stability"] == Stability.STALLED
        assert result.ok is True
        assert store.get_state().stability == Stability.STABLE

    def test_nothing_in_flight(self, store, gateway):
        store.set_stability(Stability.TRANSITIONING)
        assert gateway.mark_stalled(0.0) == []
        assert store.get_state().stability == Stability.TRANSITIONING

    def test_fast_intent_not_stalled(self, store, gateway):
        async def scenario():
            release = asyncio.Event()

            async def op():
                await release.wait()

            task = asyncio.create_task(gateway.execute(Intent.NAVIGATE_TO_LOGIN, op))
            await asyncio.sleep(0)
            stalled = gateway.mark_stalled(60.0)
            release.set()
            await task
            return stalled

        assert asyncio.run(scenario()) == []
