"""Backoff policy helpers."""

from __future__ import annotations

TASK_BACKOFF_BASE_MS = 1000
TASK_BACKOFF_MAX_MS = 30000


def exponential_backoff_ms(
    attempt: int,
    *,
    base_ms: int = TASK_BACKOFF_BASE_MS,
    multiplier: float = 2.0,
    max_ms: int = TASK_BACKOFF_MAX_MS,
) -> int:
    """
    Compute a capped exponential backoff delay.

    Args:
        attempt: 0-based number of the attempt that just failed
        base_ms: Delay after the first failure
        multiplier: Growth factor per attempt
        max_ms: Upper bound on the delay

    Returns:
        Delay in milliseconds
    """
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")
    return int(min(base_ms * multiplier**attempt, max_ms))


def task_retry_delay_ms(
    retry_count: int,
    base_ms: int = TASK_BACKOFF_BASE_MS,
    max_ms: int = TASK_BACKOFF_MAX_MS,
) -> int:
    """Delay before re-queueing a task that has already been retried ``retry_count`` times."""
    return exponential_backoff_ms(retry_count, base_ms=base_ms, multiplier=2.0, max_ms=max_ms)
