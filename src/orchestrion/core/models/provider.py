"""Models shared with execution providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TargetStatus(str, Enum):
    """Lifecycle status of a target."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    MAINTENANCE = "maintenance"


class HealthState(str, Enum):
    """Provider health classification."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class Target:
    """One automation unit (an agent, scenario or flow) hosted by a provider."""

    name: str
    provider_id: str
    external_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    status: TargetStatus = TargetStatus.ACTIVE
    description: str | None = None
    capabilities: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == TargetStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider_id": self.provider_id,
            "external_id": self.external_id,
            "status": self.status.value,
            "description": self.description,
            "capabilities": self.capabilities,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Target:
        return cls(
            id=data.get("id") or str(uuid4()),
            name=data["name"],
            provider_id=data["provider_id"],
            external_id=data.get("external_id", data["name"]),
            status=TargetStatus(data.get("status", TargetStatus.ACTIVE.value)),
            description=data.get("description"),
            capabilities=list(data.get("capabilities", [])),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass
class AuthResult:
    """Result of authenticating against a provider."""

    success: bool
    token: str | None = None
    expires_at: datetime | None = None
    error: str | None = None


@dataclass
class UnitInfo:
    """A unit discovered on a provider."""

    external_id: str
    name: str
    status: TargetStatus = TargetStatus.ACTIVE
    capabilities: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UnitStatus:
    """Live status of a unit as reported by its provider."""

    external_id: str
    status: TargetStatus
    last_seen: datetime = field(default_factory=_utc_now)
    current_task: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    """What a provider returns from ``execute``."""

    success: bool
    data: Any = None
    error: str | None = None
    execution_time_ms: float = 0.0
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class HealthStatus:
    """Provider health check outcome."""

    status: HealthState
    last_check: datetime = field(default_factory=_utc_now)
    response_time_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthState.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "response_time_ms": self.response_time_ms,
            "error": self.error,
            "details": self.details,
        }
