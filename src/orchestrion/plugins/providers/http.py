"""HTTP execution provider for automation services exposing a small REST API."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any

import httpx
import structlog

from orchestrion.core.errors import ProviderError
from orchestrion.core.models.provider import (
    AuthResult,
    ExecutionResult,
    HealthState,
    HealthStatus,
    TargetStatus,
    UnitInfo,
    UnitStatus,
)

logger = structlog.get_logger(__name__)


def _parse_status(value: Any) -> TargetStatus:
    try:
        return TargetStatus(value)
    except ValueError:
        return TargetStatus.ERROR


class HttpExecutionProvider:
    """
    Talks to a remote automation service over HTTP.

    Endpoints (relative to ``base_url``):
        POST /auth                  -> {"token": ..., "expires_at": ...}
        GET  /units                 -> [{"id", "name", "status", ...}]
        GET  /units/{id}            -> {"status", "current_task", "metrics"}
        POST /units/{id}/execute    -> {"success", "data", "error"}
        GET  /health                -> {"status", ...}

    Transport failures (timeouts, refused connections) propagate as httpx
    exceptions so the provider circuit breaker counts them. A 4xx answer to
    ``execute`` becomes an unsuccessful result; a 5xx raises ProviderError.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._headers = dict(headers or {})
        self._token: str | None = None
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = dict(self._headers)
            if self.api_key:
                headers["X-API-Key"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    async def authenticate(self, credentials: dict[str, Any]) -> AuthResult:
        client = self._get_client()
        try:
            response = await client.post("/auth", json=credentials)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return AuthResult(success=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            return AuthResult(success=False, error=str(e) or type(e).__name__)

        data = response.json()
        self._token = data.get("token")
        expires_at = data.get("expires_at")
        return AuthResult(
            success=True,
            token=self._token,
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )

    async def discover_units(self) -> list[UnitInfo]:
        client = self._get_client()
        response = await client.get("/units", headers=self._auth_headers())
        response.raise_for_status()
        return [
            UnitInfo(
                external_id=str(item["id"]),
                name=item.get("name", str(item["id"])),
                status=_parse_status(item.get("status", "active")),
                capabilities=list(item.get("capabilities", [])),
                metadata=dict(item.get("metadata", {})),
            )
            for item in response.json()
        ]

    async def get_unit_status(self, unit_id: str) -> UnitStatus:
        client = self._get_client()
        response = await client.get(f"/units/{unit_id}", headers=self._auth_headers())
        if response.status_code == 404:
            raise ProviderError(f"Unit not found: {unit_id}")
        response.raise_for_status()
        data = response.json()
        return UnitStatus(
            external_id=unit_id,
            status=_parse_status(data.get("status", "active")),
            current_task=data.get("current_task"),
            metrics=dict(data.get("metrics", {})),
        )

    async def execute(self, unit_id: str, parameters: dict[str, Any]) -> ExecutionResult:
        client = self._get_client()
        started = time.monotonic()
        response = await client.post(
            f"/units/{unit_id}/execute",
            json={"parameters": parameters},
            headers=self._auth_headers(),
        )
        elapsed_ms = (time.monotonic() - started) * 1000

        if response.status_code >= 500:
            logger.warning(
                "Execution endpoint returned server error",
                unit_id=unit_id,
                status_code=response.status_code,
            )
            raise ProviderError(f"HTTP {response.status_code} from {unit_id}")

        if response.status_code >= 400:
            return ExecutionResult(
                success=False,
                error=f"HTTP {response.status_code}: {response.text}",
                execution_time_ms=elapsed_ms,
            )

        data = response.json()
        return ExecutionResult(
            success=bool(data.get("success", True)),
            data=data.get("data"),
            error=data.get("error"),
            execution_time_ms=elapsed_ms,
        )

    async def health_check(self) -> HealthStatus:
        client = self._get_client()
        started = time.monotonic()
        try:
            response = await client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as e:
            return HealthStatus(
                status=HealthState.UNHEALTHY,
                response_time_ms=(time.monotonic() - started) * 1000,
                error=str(e) or type(e).__name__,
            )

        data = response.json()
        try:
            state = HealthState(data.get("status", "healthy"))
        except ValueError:
            state = HealthState.DEGRADED
        return HealthStatus(
            status=state,
            response_time_ms=(time.monotonic() - started) * 1000,
            details=data,
        )

    async def connect(self) -> bool:
        if self.api_key:
            result = await self.authenticate({"api_key": self.api_key})
            if not result.success:
                logger.warning("HTTP provider authentication failed", error=result.error)
                return False
        status = await self.health_check()
        return status.status != HealthState.UNHEALTHY

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._token = None
