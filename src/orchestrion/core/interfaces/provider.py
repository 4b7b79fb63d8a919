"""Execution provider interface definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from orchestrion.core.models.provider import (
        AuthResult,
        ExecutionResult,
        HealthStatus,
        UnitInfo,
        UnitStatus,
    )


@runtime_checkable
class IExecutionProvider(Protocol):
    """Contract for automation back-ends that execute units of work."""

    @property
    def name(self) -> str:
        """Provider name."""
        ...

    async def authenticate(self, credentials: dict[str, Any]) -> AuthResult:
        """
        Authenticate against the back-end.

        Args:
            credentials: Provider-specific credential mapping

        Returns:
            Authentication outcome; failures are reported, not raised
        """
        ...

    async def discover_units(self) -> list[UnitInfo]:
        """List the executable units the back-end exposes."""
        ...

    async def get_unit_status(self, unit_id: str) -> UnitStatus:
        """
        Get live status of one unit.

        Raises:
            ProviderError: If the unit is unknown to the back-end
        """
        ...

    async def execute(self, unit_id: str, parameters: dict[str, Any]) -> ExecutionResult:
        """
        Run a unit with the given parameters.

        A business-level failure is returned as ``ExecutionResult(success=False)``.
        Transport failures (timeouts, refused connections) are raised so that
        the provider's circuit breaker can count them.

        Args:
            unit_id: Provider-side identifier of the unit
            parameters: Resolved input parameters

        Returns:
            Execution result
        """
        ...

    async def health_check(self) -> HealthStatus:
        """Probe the back-end."""
        ...

    async def connect(self) -> bool:
        """Open the connection. Returns True when connected."""
        ...

    async def disconnect(self) -> None:
        """Close the connection and release resources."""
        ...
