"""Engine layer - task scheduling and workflow execution."""

from orchestrion.core.engine.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitState,
)
from orchestrion.core.engine.clock import Clock, ManualClock, SystemClock
from orchestrion.core.engine.orchestrator import WorkflowOrchestrator
from orchestrion.core.engine.queue import QueuedTask, TaskQueue
from orchestrion.core.engine.scheduler import TaskScheduler
from orchestrion.core.engine.ticker import Ticker
from orchestrion.core.engine.validation import WorkflowValidator

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerManager",
    "CircuitState",
    "Clock",
    "ManualClock",
    "QueuedTask",
    "SystemClock",
    "TaskQueue",
    "TaskScheduler",
    "Ticker",
    "WorkflowOrchestrator",
    "WorkflowValidator",
]
