"""Configuration models using Pydantic."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseModel):
    """Task scheduler configuration."""

    max_concurrent_tasks: int = Field(default=10, ge=1, le=100)
    queue_processing_interval_ms: int = Field(default=1000, ge=100, le=10000)
    default_timeout_ms: int = Field(default=30000, ge=1000, le=300000)
    default_max_retries: int = Field(default=3, ge=0, le=10)
    retry_on_timeout: bool = False
    base_backoff_ms: int = Field(default=1000, ge=1)
    max_backoff_ms: int = Field(default=30000, ge=1)


class CircuitBreakerSettings(BaseModel):
    """Per-provider circuit breaker configuration."""

    failure_threshold: int = Field(default=3, ge=1)
    recovery_timeout_s: float = Field(default=30.0, gt=0)


class WorkflowConfig(BaseModel):
    """Workflow orchestrator configuration."""

    terminal_cache_size: int = Field(default=100, ge=0)

    class DefaultRetryConfig(BaseModel):
        """Retry policy for steps that declare none."""

        max_retries: int = Field(default=3, ge=0, le=10)
        backoff_ms: int = Field(default=1000, ge=100)
        backoff_multiplier: float = Field(default=2.0, ge=1.0)
        max_backoff_ms: int = Field(default=30000, ge=1000)

    default_retry: DefaultRetryConfig = Field(default_factory=DefaultRetryConfig)


class EventsConfig(BaseModel):
    """Event bus configuration."""

    max_queue_size: int = Field(default=10000, ge=1)


class StorageConfig(BaseModel):
    """Persistence configuration."""

    backend: Literal["memory", "database"] = "memory"
    url: str = "sqlite+aiosqlite:///orchestrion.db"
    echo: bool = False


class LogConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    structured: bool = True
    file: Path | None = None


class PluginConfig(BaseModel):
    """Plugin configuration."""

    enabled: bool = True
    directory: Path | None = None
    disabled: list[str] = []


class ProviderConfig(BaseModel):
    """One provider instance to register at startup."""

    id: str
    type: str = "mock"
    options: dict[str, Any] = {}


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRION_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logs: LogConfig = Field(default_factory=LogConfig)
    plugins: PluginConfig = Field(default_factory=PluginConfig)
    providers: list[ProviderConfig] = []

    @classmethod
    def from_yaml(cls, path: Path | str) -> Config:
        """Load configuration from YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open() as f:
            data = yaml.safe_load(f)

        return cls(**data) if data else cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Create configuration from dictionary."""
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump(mode="json")

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        import yaml

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)

    def merge(self, other: Config) -> Config:
        """Merge with another config, other takes precedence."""

        def deep_merge(base: dict, override: dict) -> dict:
            result = base.copy()
            for key, value in override.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = deep_merge(result[key], value)
                else:
                    result[key] = value
            return result

        merged = deep_merge(self.model_dump(), other.model_dump(exclude_unset=True))
        return Config(**merged)
