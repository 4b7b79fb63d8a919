"""Circuit breaker pattern implementation."""

from __future__ import annotations

import asyncio
import inspect
import socket
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

import httpx
import structlog

from orchestrion.core.engine.clock import DEFAULT_CLOCK, Clock
from orchestrion.core.errors import CircuitOpenError, ProviderAbortedError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ErrorPredicate = Callable[[BaseException], bool]
StateListener = Callable[[str, "CircuitState", "CircuitState"], None]

_NETWORK_MARKERS = ("timeout", "ECONNREFUSED", "ENOTFOUND", "network")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # One trial call allowed


def count_all_errors(error: BaseException) -> bool:
    """Default predicate: every exception counts as a failure."""
    return True


def is_network_error(error: BaseException) -> bool:
    """Classify transport-level failures that indicate an unhealthy back-end."""
    if isinstance(
        error,
        (
            TimeoutError,
            ConnectionRefusedError,
            socket.gaierror,
            httpx.TimeoutException,
            httpx.NetworkError,
            ProviderAbortedError,
        ),
    ):
        return True
    message = str(error)
    return any(marker in message for marker in _NETWORK_MARKERS)


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0  # seconds
    expected_errors: ErrorPredicate = field(default=count_all_errors)


@dataclass
class CircuitStats:
    """Point-in-time view of a breaker."""

    state: CircuitState
    failures: int
    successes: int
    requests: int
    rejected: int
    last_failure_time: datetime | None
    next_attempt: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "successes": self.successes,
            "requests": self.requests,
            "rejected": self.rejected,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "next_attempt": self.next_attempt.isoformat() if self.next_attempt else None,
        }


class CircuitBreaker:
    """
    Circuit breaker for calls to an unreliable dependency.

    Closed: calls pass; expected failures are counted and reaching the
    threshold opens the circuit. Open: calls are rejected with
    CircuitOpenError until ``next_attempt``. Half-open: a single trial
    call is let through; success closes the circuit, an expected failure
    reopens it.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Clock | None = None,
        on_state_change: StateListener | None = None,
    ) -> None:
        """
        Initialize circuit breaker.

        Args:
            name: Circuit breaker name (for logging)
            config: Configuration options
            clock: Time source, injectable for tests
            on_state_change: Called with (name, old_state, new_state) on every transition
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or DEFAULT_CLOCK
        self._on_state_change = on_state_change
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._requests = 0
        self._rejected = 0
        self._last_failure_time: datetime | None = None
        self._next_attempt: datetime | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    async def call(
        self,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a function through the circuit breaker.

        Args:
            func: Sync or async callable
            *args: Function arguments
            **kwargs: Function keyword arguments

        Returns:
            Function result

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Original exception if function fails
        """
        async with self._lock:
            trial = self._admit()
            self._requests += 1

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            await self._on_failure(e, trial)
            raise
        except BaseException:
            # Cancellation: neither success nor failure
            if trial:
                self._trial_in_flight = False
            raise

        await self._on_success(trial)
        return result

    def _admit(self) -> bool:
        """Decide whether a call may run. Returns True for the half-open trial call."""
        if self._state == CircuitState.OPEN:
            if self._next_attempt is not None and self._clock.now() >= self._next_attempt:
                self._transition_to(CircuitState.HALF_OPEN)
            else:
                self._rejected += 1
                raise CircuitOpenError(self.name, self._next_attempt)

        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self._rejected += 1
                raise CircuitOpenError(self.name, self._next_attempt)
            self._trial_in_flight = True
            return True

        return False

    async def _on_success(self, trial: bool) -> None:
        async with self._lock:
            self._successes += 1
            if trial:
                self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._failures = 0
                self._last_failure_time = None
                self._next_attempt = None
                self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failures = 0

    async def _on_failure(self, error: Exception, trial: bool) -> None:
        async with self._lock:
            if trial:
                self._trial_in_flight = False

            if not self.config.expected_errors(error):
                return

            self._failures += 1
            self._last_failure_time = self._clock.now()

            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failures >= self.config.failure_threshold
            ):
                self._open()

    def _open(self) -> None:
        self._next_attempt = self._clock.now() + timedelta(seconds=self.config.recovery_timeout)
        self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state == new_state:
            return

        logger.info(
            "Circuit state changed",
            name=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            failures=self._failures,
        )
        if self._on_state_change is not None:
            try:
                self._on_state_change(self.name, old_state, new_state)
            except Exception as e:
                logger.warning("Circuit state listener failed", name=self.name, error=str(e))

    def get_stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return CircuitStats(
            state=self._state,
            failures=self._failures,
            successes=self._successes,
            requests=self._requests,
            rejected=self._rejected,
            last_failure_time=self._last_failure_time,
            next_attempt=self._next_attempt,
        )

    async def reset(self) -> None:
        """Reset circuit to closed state with all counters zeroed."""
        async with self._lock:
            self._failures = 0
            self._successes = 0
            self._requests = 0
            self._rejected = 0
            self._last_failure_time = None
            self._next_attempt = None
            self._trial_in_flight = False
            self._transition_to(CircuitState.CLOSED)

    async def force_open(self) -> None:
        """Open the circuit now, as if the threshold had just been reached."""
        async with self._lock:
            self._last_failure_time = self._clock.now()
            self._open()

    async def force_closed(self) -> None:
        """Close the circuit without touching the counters."""
        async with self._lock:
            self._last_failure_time = None
            self._next_attempt = None
            self._trial_in_flight = False
            self._transition_to(CircuitState.CLOSED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            **self.get_stats().to_dict(),
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout": self.config.recovery_timeout,
            },
        }


def create_provider_circuit_breaker(
    name: str,
    config: CircuitBreakerConfig | None = None,
    *,
    clock: Clock | None = None,
    on_state_change: StateListener | None = None,
) -> CircuitBreaker:
    """
    Create a breaker tuned for execution providers.

    Opens after 3 network-class failures and allows a trial call after 30 seconds.
    Business failures (a provider returning ``success=False`` or raising a
    non-network error) do not count.
    """
    base = CircuitBreakerConfig(
        failure_threshold=3,
        recovery_timeout=30.0,
        expected_errors=is_network_error,
    )
    if config is not None:
        base = replace(
            base,
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
        )
    return CircuitBreaker(name, base, clock=clock, on_state_change=on_state_change)


class CircuitBreakerManager:
    """Manages one circuit breaker per name."""

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        on_state_change: StateListener | None = None,
    ) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}
        self._clock = clock
        self._on_state_change = on_state_change

    def get_or_create(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        provider: bool = False,
    ) -> CircuitBreaker:
        """
        Get or create a circuit breaker.

        Args:
            name: Breaker name
            config: Options for a newly created breaker
            provider: Build a provider breaker (network-error predicate)
        """
        if name not in self._breakers:
            if provider:
                breaker = create_provider_circuit_breaker(
                    name, config, clock=self._clock, on_state_change=self._on_state_change
                )
            else:
                breaker = CircuitBreaker(
                    name, config, clock=self._clock, on_state_change=self._on_state_change
                )
            self._breakers[name] = breaker
        return self._breakers[name]

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a circuit breaker by name."""
        return self._breakers.get(name)

    def remove(self, name: str) -> None:
        self._breakers.pop(name, None)

    def list_all(self) -> list[CircuitBreaker]:
        """List all circuit breakers."""
        return list(self._breakers.values())

    async def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for breaker in self._breakers.values():
            await breaker.reset()

    def get_stats(self) -> dict[str, dict[str, Any]]:
        """Get stats for all circuit breakers."""
        return {name: breaker.to_dict() for name, breaker in self._breakers.items()}
