"""Periodic background loop owned by an engine component."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

MIN_INTERVAL_MS = 100
MAX_INTERVAL_MS = 10000


def clamp(value: int, lower: int, upper: int) -> int:
    """Clamp ``value`` to the closed range [lower, upper]."""
    return max(lower, min(upper, value))


class Ticker:
    """
    Runs an async callback at a fixed interval until stopped.

    The interval is clamped to [100ms, 10s]. Changing it while running
    restarts the loop so the new interval takes effect immediately.
    Exceptions from the callback are logged and do not stop the loop.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval_ms: int = 1000,
        *,
        name: str = "ticker",
    ) -> None:
        self._callback = callback
        self._interval_ms = clamp(interval_ms, MIN_INTERVAL_MS, MAX_INTERVAL_MS)
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._ticks = 0

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        """Number of completed callback invocations."""
        return self._ticks

    def set_interval(self, interval_ms: int) -> int:
        """
        Change the interval.

        Returns:
            The interval actually applied after clamping
        """
        self._interval_ms = clamp(interval_ms, MIN_INTERVAL_MS, MAX_INTERVAL_MS)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            self._task = asyncio.create_task(self._run(), name=self._name)
            logger.debug("Ticker restarted", name=self._name, interval_ms=self._interval_ms)
        return self._interval_ms

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=self._name)
        logger.debug("Ticker started", name=self._name, interval_ms=self._interval_ms)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.debug("Ticker stopped", name=self._name, ticks=self._ticks)

    async def _run(self) -> None:
        while True:
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Ticker callback failed", name=self._name, error=str(e))
            self._ticks += 1
            await asyncio.sleep(self._interval_ms / 1000)
