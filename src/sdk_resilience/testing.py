"""Deterministic test doubles shipped with the package."""

from __future__ import annotations

import asyncio


class FakeClock:
    """
    Manually advanced Clock.

    ``sleep`` records the requested delay, advances time by it and yields
    once to the event loop, so backoff and cooldown logic runs instantly
    while its timing stays observable.

    Example:
        clock = FakeClock()
        handler = ErrorHandler(ErrorHandlerConfig(retry_delay=0.1), clock=clock)
        ...
        assert clock.sleeps == [0.1, 0.2]
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._monotonic = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._monotonic

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError(f"cannot move time backwards by {seconds}")
        self._now += seconds
        self._monotonic += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


__all__ = ["FakeClock"]
