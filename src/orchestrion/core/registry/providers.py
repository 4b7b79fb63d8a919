"""Registry of live execution provider instances."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

import structlog

from orchestrion.core.engine.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitState,
)
from orchestrion.core.errors import ProviderNotFoundError
from orchestrion.core.events.types import EventType
from orchestrion.core.interfaces.provider import IExecutionProvider
from orchestrion.core.models.provider import HealthState, HealthStatus, Target

if TYPE_CHECKING:
    from orchestrion.core.engine.clock import Clock
    from orchestrion.core.events.notifier import EngineNotifier
    from orchestrion.core.models.provider import ExecutionResult

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """
    Holds provider instances by id, each guarded by its own circuit breaker.

    The registry is created once per engine and handed to the scheduler
    and orchestrator; there is no module-level instance.
    """

    def __init__(
        self,
        *,
        breaker_config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
        notifier: EngineNotifier | None = None,
    ) -> None:
        self._providers: dict[str, IExecutionProvider] = {}
        self._breaker_config = breaker_config
        self._notifier = notifier
        self._breakers = CircuitBreakerManager(clock=clock, on_state_change=self._on_circuit_change)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def breakers(self) -> CircuitBreakerManager:
        return self._breakers

    def register(self, provider_id: str, provider: IExecutionProvider) -> None:
        """
        Register a provider instance under ``provider_id``.

        Raises:
            TypeError: If ``provider`` does not implement IExecutionProvider
        """
        if not isinstance(provider, IExecutionProvider):
            raise TypeError(f"{type(provider).__name__} does not implement IExecutionProvider")
        self._providers[provider_id] = provider
        self._breakers.get_or_create(provider_id, self._breaker_config, provider=True)
        logger.info("Provider registered", provider_id=provider_id, provider=provider.name)
        if self._notifier is not None:
            self._notifier.system(
                EventType.PROVIDER_REGISTERED,
                provider_id=provider_id,
                provider=provider.name,
            )

    def unregister(self, provider_id: str) -> IExecutionProvider | None:
        self._breakers.remove(provider_id)
        return self._providers.pop(provider_id, None)

    def get(self, provider_id: str) -> IExecutionProvider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def breaker(self, provider_id: str) -> CircuitBreaker:
        breaker = self._breakers.get(provider_id)
        if breaker is None:
            raise ProviderNotFoundError(provider_id)
        return breaker

    def list_ids(self) -> list[str]:
        return list(self._providers)

    async def execute(
        self,
        provider_id: str,
        unit_id: str,
        parameters: dict[str, Any],
        *,
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        """
        Execute a unit through its provider's circuit breaker.

        The timeout is applied inside the breaker, so a timed-out call
        counts toward opening the circuit.

        Raises:
            ProviderNotFoundError: Unknown provider id
            CircuitOpenError: Breaker rejected the call
            TimeoutError: The call exceeded ``timeout_ms``
        """
        provider = self.get(provider_id)
        breaker = self.breaker(provider_id)

        async def invoke() -> ExecutionResult:
            if timeout_ms is None:
                return await provider.execute(unit_id, parameters)
            return await asyncio.wait_for(provider.execute(unit_id, parameters), timeout_ms / 1000)

        return await breaker.call(invoke)

    async def discover_targets(self, provider_id: str) -> list[Target]:
        """Build Target records for every unit a provider exposes."""
        provider = self.get(provider_id)
        units = await self.breaker(provider_id).call(provider.discover_units)
        return [
            Target(
                id=f"{provider_id}:{unit.external_id}",
                name=unit.name,
                provider_id=provider_id,
                external_id=unit.external_id,
                status=unit.status,
                capabilities=list(unit.capabilities),
                metadata=dict(unit.metadata),
            )
            for unit in units
        ]

    async def check_all_health(self) -> dict[str, HealthStatus]:
        """Health-check every provider concurrently. Failures become UNHEALTHY."""
        ids = list(self._providers)
        results = await asyncio.gather(
            *(self._check_health(provider_id) for provider_id in ids),
        )
        return dict(zip(ids, results, strict=True))

    async def _check_health(self, provider_id: str) -> HealthStatus:
        provider = self._providers[provider_id]
        started = time.monotonic()
        try:
            status = await provider.health_check()
        except Exception as e:
            logger.warning("Provider health check failed", provider_id=provider_id, error=str(e))
            status = HealthStatus(
                status=HealthState.UNHEALTHY,
                response_time_ms=(time.monotonic() - started) * 1000,
                error=str(e),
            )
        if self._notifier is not None:
            self._notifier.system(
                EventType.PROVIDER_HEALTH_CHECK,
                provider_id=provider_id,
                status=status.status.value,
            )
        return status

    async def connect_all(self) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for provider_id, provider in self._providers.items():
            try:
                results[provider_id] = await provider.connect()
            except Exception as e:
                logger.warning("Provider connect failed", provider_id=provider_id, error=str(e))
                results[provider_id] = False
        return results

    async def disconnect_all(self) -> None:
        for provider_id, provider in self._providers.items():
            try:
                await provider.disconnect()
            except Exception as e:
                logger.warning("Provider disconnect failed", provider_id=provider_id, error=str(e))

    def _on_circuit_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        if self._notifier is not None:
            self._notifier.system(
                EventType.CIRCUIT_STATE_CHANGED,
                provider_id=name,
                old_state=old.value,
                new_state=new.value,
            )
