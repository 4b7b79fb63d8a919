"""Mock execution provider for development, dry runs and tests."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from typing import Any
from uuid import uuid4

import structlog

from orchestrion.core.errors import ProviderError
from orchestrion.core.models.provider import (
    AuthResult,
    ExecutionResult,
    HealthState,
    HealthStatus,
    UnitInfo,
    UnitStatus,
)

logger = structlog.get_logger(__name__)

Outcome = ExecutionResult | BaseException | dict[str, Any]


class MockExecutionProvider:
    """
    In-process provider with configurable latency and failure modes.

    Outcomes can be scripted per unit with ``script()``: each call to
    ``execute`` for that unit consumes the next outcome. A dict becomes a
    successful result's data, an ExecutionResult is returned as-is and an
    exception is raised. Unscripted calls succeed, returning the unit's
    configured output or a generic payload.
    """

    name = "mock"

    def __init__(
        self,
        units: list[UnitInfo | dict[str, Any]] | None = None,
        *,
        delay: float = 0.0,
        fail_auth: bool = False,
        fail_health_check: bool = False,
        fail_execution: bool = False,
        outputs: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize mock provider.

        Args:
            units: Units exposed by ``discover_units``
            delay: Seconds each call sleeps before answering
            fail_auth: Make ``authenticate`` report failure
            fail_health_check: Make ``health_check`` report UNHEALTHY
            fail_execution: Make ``execute`` return ``success=False``
            outputs: Fixed result data per unit id
        """
        self._units: dict[str, UnitInfo] = {}
        for unit in units or []:
            info = unit if isinstance(unit, UnitInfo) else UnitInfo(**unit)
            self._units[info.external_id] = info
        self.delay = delay
        self.fail_auth = fail_auth
        self.fail_health_check = fail_health_check
        self.fail_execution = fail_execution
        self._outputs = dict(outputs or {})
        self._scripts: dict[str, deque[Outcome]] = defaultdict(deque)
        self._connected = False

        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._in_flight = 0
        self.max_in_flight = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def add_unit(self, external_id: str, name: str | None = None, output: Any = None) -> UnitInfo:
        info = UnitInfo(external_id=external_id, name=name or external_id)
        self._units[external_id] = info
        if output is not None:
            self._outputs[external_id] = output
        return info

    def script(self, unit_id: str, *outcomes: Outcome) -> None:
        """Queue outcomes for successive ``execute`` calls on ``unit_id``."""
        self._scripts[unit_id].extend(outcomes)

    async def _sleep(self) -> None:
        if self.delay > 0:
            await asyncio.sleep(self.delay)

    async def authenticate(self, credentials: dict[str, Any]) -> AuthResult:
        await self._sleep()
        if self.fail_auth:
            return AuthResult(success=False, error="Mock authentication failure")
        return AuthResult(success=True, token=f"mock-token-{uuid4().hex[:8]}")

    async def discover_units(self) -> list[UnitInfo]:
        await self._sleep()
        return list(self._units.values())

    async def get_unit_status(self, unit_id: str) -> UnitStatus:
        await self._sleep()
        unit = self._units.get(unit_id)
        if unit is None:
            raise ProviderError(f"Unit not found: {unit_id}")
        return UnitStatus(
            external_id=unit_id,
            status=unit.status,
            metrics={"executions": sum(1 for uid, _ in self.calls if uid == unit_id)},
        )

    async def execute(self, unit_id: str, parameters: dict[str, Any]) -> ExecutionResult:
        started = time.monotonic()
        self.calls.append((unit_id, dict(parameters)))
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            await self._sleep()
            elapsed_ms = (time.monotonic() - started) * 1000

            if self._scripts[unit_id]:
                outcome = self._scripts[unit_id].popleft()
                if isinstance(outcome, BaseException):
                    raise outcome
                if isinstance(outcome, ExecutionResult):
                    return outcome
                return ExecutionResult(success=True, data=outcome, execution_time_ms=elapsed_ms)

            if self.fail_execution:
                return ExecutionResult(
                    success=False,
                    error="Mock execution failure",
                    execution_time_ms=elapsed_ms,
                )

            data = self._outputs.get(unit_id)
            if data is None:
                data = {
                    "result": "Mock execution successful",
                    "params": dict(parameters),
                    "unit_id": unit_id,
                    "execution_id": f"mock-exec-{uuid4().hex[:12]}",
                }
            return ExecutionResult(success=True, data=data, execution_time_ms=elapsed_ms)
        finally:
            self._in_flight -= 1

    async def health_check(self) -> HealthStatus:
        started = time.monotonic()
        await self._sleep()
        elapsed_ms = (time.monotonic() - started) * 1000
        if self.fail_health_check:
            return HealthStatus(
                status=HealthState.UNHEALTHY,
                response_time_ms=elapsed_ms,
                error="Mock health check failure",
            )
        return HealthStatus(
            status=HealthState.HEALTHY,
            response_time_ms=elapsed_ms,
            details={"unit_count": len(self._units), "mock": True},
        )

    async def connect(self) -> bool:
        result = await self.authenticate({})
        self._connected = result.success
        if not result.success:
            logger.warning("Mock provider failed to connect", error=result.error)
        return self._connected

    async def disconnect(self) -> None:
        self._connected = False
