"""Injectable time source for backoff, cooldown and retention bookkeeping."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Protocol for the time source used by the resilience components."""

    def monotonic(self) -> float:
        """Seconds on a monotonic scale, for measuring elapsed time."""
        ...

    def time(self) -> float:
        """Wall-clock seconds since the epoch, for timestamps."""
        ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Clock backed by the ``time`` module and ``asyncio.sleep``."""

    def monotonic(self) -> float:
        return time.monotonic()

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


SYSTEM_CLOCK: Clock = SystemClock()

__all__ = ["Clock", "SystemClock", "SYSTEM_CLOCK"]
