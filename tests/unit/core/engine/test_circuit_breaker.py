"""Tests for CircuitBreaker and CircuitBreakerManager."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from orchestrion.core.engine.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitState,
    create_provider_circuit_breaker,
    is_network_error,
)
from orchestrion.core.engine.clock import ManualClock
from orchestrion.core.errors import CircuitOpenError, ProviderAbortedError


async def _fail(exc: Exception) -> None:
    raise exc


async def _ok() -> str:
    return "ok"


def _breaker(clock: ManualClock, threshold: int = 3, recovery: float = 30.0, **kwargs) -> CircuitBreaker:
    return CircuitBreaker(
        "svc",
        CircuitBreakerConfig(failure_threshold=threshold, recovery_timeout=recovery),
        clock=clock,
        **kwargs,
    )


# ============================================================================
# STATE MACHINE
# ============================================================================


class TestCircuitBreakerClosed:
    """Tests for the closed state."""

    @pytest.mark.asyncio
    async def test_successful_call_returns_result(self, clock):
        """Test a passing call returns its value and keeps the circuit closed."""
        breaker = _breaker(clock)
        assert await breaker.call(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().successes == 1

    @pytest.mark.asyncio
    async def test_sync_callable_supported(self, clock):
        """Test that plain functions are called without awaiting."""
        breaker = _breaker(clock)
        assert await breaker.call(lambda x: x * 2, 21) == 42

    @pytest.mark.asyncio
    async def test_opens_after_threshold_consecutive_failures(self, clock):
        """Test that reaching the failure threshold opens the circuit."""
        breaker = _breaker(clock, threshold=3)
        for _ in range(2):
            with pytest.raises(ValueError):
                await breaker.call(_fail, ValueError("boom"))
        assert breaker.is_closed

        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, clock):
        """Test that failures must be consecutive to open the circuit."""
        breaker = _breaker(clock, threshold=2)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        await breaker.call(_ok)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        assert breaker.is_closed
        assert breaker.get_stats().failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_do_not_count(self, clock):
        """Test that errors rejected by the predicate leave the circuit closed."""
        breaker = CircuitBreaker(
            "svc",
            CircuitBreakerConfig(failure_threshold=1, expected_errors=is_network_error),
            clock=clock,
        )
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("bad input"))
        assert breaker.is_closed
        assert breaker.get_stats().failures == 0


class TestCircuitBreakerOpen:
    """Tests for the open and half-open states."""

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self, clock):
        """Test that an open circuit raises CircuitOpenError and skips the call."""
        breaker = _breaker(clock, threshold=1)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))

        called = False

        async def trial() -> None:
            nonlocal called
            called = True

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(trial)
        assert called is False
        assert exc_info.value.name == "svc"
        assert exc_info.value.next_attempt == breaker.get_stats().next_attempt
        assert breaker.get_stats().rejected == 1

    @pytest.mark.asyncio
    async def test_next_attempt_is_recovery_timeout_after_failure(self, clock):
        """Test that next_attempt is set recovery_timeout seconds ahead."""
        breaker = _breaker(clock, threshold=1, recovery=30.0)
        opened_at = clock.now()
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        assert (breaker.get_stats().next_attempt - opened_at).total_seconds() == 30.0

    @pytest.mark.asyncio
    async def test_trial_call_after_recovery_closes_on_success(self, clock):
        """Test that a successful trial call closes the circuit."""
        breaker = _breaker(clock, threshold=1, recovery=30.0)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))

        clock.advance(30)
        assert await breaker.call(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().failures == 0

    @pytest.mark.asyncio
    async def test_trial_call_failure_reopens(self, clock):
        """Test that a failed trial call opens the circuit again."""
        breaker = _breaker(clock, threshold=1, recovery=30.0)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))

        clock.advance(31)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("still down"))
        assert breaker.is_open
        assert (breaker.get_stats().next_attempt - clock.now()).total_seconds() == 30.0

    @pytest.mark.asyncio
    async def test_half_open_admits_single_trial(self, clock):
        """Test that concurrent calls in half-open state are rejected."""
        breaker = _breaker(clock, threshold=1, recovery=1.0)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        clock.advance(1)

        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "done"

        trial = asyncio.create_task(breaker.call(slow))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.call(_ok)

        release.set()
        assert await trial == "done"
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_state_listener_receives_transitions(self, clock):
        """Test that on_state_change sees every transition in order."""
        transitions = []
        breaker = _breaker(
            clock,
            threshold=1,
            recovery=5.0,
            on_state_change=lambda name, old, new: transitions.append((name, old, new)),
        )
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        clock.advance(5)
        await breaker.call(_ok)

        assert transitions == [
            ("svc", CircuitState.CLOSED, CircuitState.OPEN),
            ("svc", CircuitState.OPEN, CircuitState.HALF_OPEN),
            ("svc", CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_breaker(self, clock):
        """Test that listener exceptions are swallowed."""

        def listener(name, old, new):
            raise RuntimeError("listener down")

        breaker = _breaker(clock, threshold=1, on_state_change=listener)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        assert breaker.is_open


class TestCircuitBreakerControls:
    """Tests for manual reset, force_open and force_closed."""

    @pytest.mark.asyncio
    async def test_reset_zeroes_counters(self, clock):
        breaker = _breaker(clock, threshold=1)
        with pytest.raises(ValueError):
            await breaker.call(_fail, ValueError("boom"))
        await breaker.reset()

        stats = breaker.get_stats()
        assert stats.state == CircuitState.CLOSED
        assert stats.failures == 0
        assert stats.requests == 0
        assert stats.next_attempt is None

    @pytest.mark.asyncio
    async def test_force_open_and_closed(self, clock):
        breaker = _breaker(clock)
        await breaker.force_open()
        assert breaker.is_open
        with pytest.raises(CircuitOpenError):
            await breaker.call(_ok)

        await breaker.force_closed()
        assert await breaker.call(_ok) == "ok"

    def test_to_dict(self, clock):
        """Test serialization includes config and state."""
        data = _breaker(clock, threshold=4, recovery=10.0).to_dict()
        assert data["name"] == "svc"
        assert data["state"] == "closed"
        assert data["config"] == {"failure_threshold": 4, "recovery_timeout": 10.0}


# ============================================================================
# PROVIDER BREAKERS
# ============================================================================


class TestNetworkErrorClassification:
    """Tests for is_network_error."""

    @pytest.mark.parametrize(
        "error",
        [
            TimeoutError(),
            ConnectionRefusedError(),
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            ProviderAbortedError("aborted"),
            RuntimeError("connect ECONNREFUSED 127.0.0.1:80"),
            RuntimeError("getaddrinfo ENOTFOUND api.example.com"),
            RuntimeError("network unreachable"),
        ],
    )
    def test_network_errors(self, error):
        assert is_network_error(error) is True

    @pytest.mark.parametrize("error", [ValueError("bad input"), KeyError("missing")])
    def test_business_errors(self, error):
        assert is_network_error(error) is False


class TestProviderCircuitBreaker:
    """Tests for the provider-tuned factory."""

    def test_defaults(self, clock):
        breaker = create_provider_circuit_breaker("crm", clock=clock)
        assert breaker.config.failure_threshold == 3
        assert breaker.config.recovery_timeout == 30.0
        assert breaker.config.expected_errors is is_network_error

    def test_overrides_keep_network_predicate(self, clock):
        breaker = create_provider_circuit_breaker(
            "crm", CircuitBreakerConfig(failure_threshold=5, recovery_timeout=10.0), clock=clock
        )
        assert breaker.config.failure_threshold == 5
        assert breaker.config.recovery_timeout == 10.0
        assert breaker.config.expected_errors is is_network_error

    @pytest.mark.asyncio
    async def test_opens_on_network_errors_only(self, clock):
        breaker = create_provider_circuit_breaker("crm", clock=clock)
        for _ in range(5):
            with pytest.raises(ValueError):
                await breaker.call(_fail, ValueError("bad input"))
        assert breaker.is_closed

        for _ in range(3):
            with pytest.raises(TimeoutError):
                await breaker.call(_fail, TimeoutError())
        assert breaker.is_open


class TestCircuitBreakerManager:
    """Tests for CircuitBreakerManager."""

    def test_get_or_create_returns_same_instance(self, clock):
        manager = CircuitBreakerManager(clock=clock)
        first = manager.get_or_create("a")
        assert manager.get_or_create("a") is first
        assert manager.get("missing") is None

    def test_provider_flag_builds_provider_breaker(self, clock):
        manager = CircuitBreakerManager(clock=clock)
        breaker = manager.get_or_create("crm", provider=True)
        assert breaker.config.expected_errors is is_network_error

    @pytest.mark.asyncio
    async def test_reset_all_and_stats(self, clock):
        manager = CircuitBreakerManager(clock=clock)
        breaker = manager.get_or_create("a", CircuitBreakerConfig(failure_threshold=1))
        await breaker.force_open()

        assert manager.get_stats()["a"]["state"] == "open"
        await manager.reset_all()
        assert breaker.is_closed

    def test_remove(self, clock):
        manager = CircuitBreakerManager(clock=clock)
        manager.get_or_create("a")
        manager.remove("a")
        manager.remove("a")
        assert manager.list_all() == []
