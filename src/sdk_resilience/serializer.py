"""
Per-key serialization of asynchronous operations.

Operations submitted under the same key run one at a time in submission
order; operations under different keys run concurrently. A failing
operation releases its slot like a successful one, and its error is
delivered only to its own caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar


_logger = logging.getLogger(__name__)

R = TypeVar("R")


class KeySerializer:
    """
    Per-key FIFO lock table.

    Each key maps to the completion future of the most recently submitted
    operation. A new operation registers its own future before waiting, so a
    third caller queues behind the second even while the second is still
    waiting for the first.

    Usage:
        serializer = KeySerializer()
        await serializer.with_lock("conversation:42", save_conversation)
    """

    def __init__(self) -> None:
        self._slots: dict[str, asyncio.Future[None]] = {}

    @property
    def lock_count(self) -> int:
        """Number of keys with an in-flight or queued operation."""
        return len(self._slots)

    def has_lock(self, key: str) -> bool:
        return key in self._slots

    def active_keys(self) -> list[str]:
        return list(self._slots)

    async def with_lock(self, key: str, operation: Callable[[], Awaitable[R]]) -> R:
        """
        Run ``operation`` once every earlier operation on ``key`` has settled.

        Args:
            key: Opaque identifier of the resource being mutated
            operation: Zero-argument coroutine function to run under the slot

        Returns:
            Whatever ``operation`` returns

        Raises:
            Exception: Whatever ``operation`` raises; a predecessor's failure
                is never propagated here
        """
        predecessor = self._slots.get(key)
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._slots[key] = done

        try:
            if predecessor is not None:
                _logger.debug(f"Key {key!r} busy, queueing behind predecessor")
                await asyncio.shield(predecessor)
            return await operation()
        finally:
            self._release(key, done, predecessor)

    def _release(
        self,
        key: str,
        done: asyncio.Future[None],
        predecessor: asyncio.Future[None] | None,
    ) -> None:
        if predecessor is not None and not predecessor.done():
            # Cancelled while queued: hold the slot until the predecessor settles.
            predecessor.add_done_callback(lambda _: self._release(key, done, None))
            return

        _settle(done)
        if self._slots.get(key) is done:
            del self._slots[key]
            _logger.debug(f"Released slot for key {key!r}")


def _settle(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


__all__ = ["KeySerializer"]
