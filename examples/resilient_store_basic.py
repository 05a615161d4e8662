#!/usr/bin/env python3
"""
Basic resilient store example.

Demonstrates:
- Two clients writing the same document concurrently
- Revision conflicts absorbed by the save path
- Checkpoint history and recovery after a failed update
"""

from __future__ import annotations

import asyncio
from typing import Callable

from pydantic import JsonValue

from sdk_resilience import ErrorHandler, ErrorHandlerConfig, RecoveryConfig, RecoveryManager
from sdk_resilience import ResilientStore
from sdk_resilience.storage import InMemoryVersionedStore, MemoryBackend


PATH = "conversations/42.json"
KEY = "conversation:42"


async def main() -> None:
    """Run resilient store demo."""
    backend = MemoryBackend()
    handler = ErrorHandler(ErrorHandlerConfig(max_retries=3, retry_delay=0.05))
    recovery = RecoveryManager(RecoveryConfig(max_checkpoints=5))

    alice = ResilientStore(InMemoryVersionedStore(backend), handler=handler, recovery=recovery)
    bob = ResilientStore(InMemoryVersionedStore(backend), handler=handler)

    print("=== Initial Save ===")
    receipt = await alice.save(KEY, PATH, {"title": "demo", "messages": []})
    print(f"Revision: {receipt.revision} ({receipt.size} bytes)")

    print("\n=== Concurrent Updates ===")
    await alice.load(KEY, PATH)
    await bob.load(KEY, PATH)

    def append(author: str) -> Callable[[JsonValue], JsonValue]:
        def mutate(doc: JsonValue) -> JsonValue:
            if not isinstance(doc, dict):
                raise ValueError("Invalid document: expected an object")
            messages = doc.get("messages")
            doc["messages"] = [*messages, author] if isinstance(messages, list) else [author]
            return doc

        return mutate

    await asyncio.gather(
        alice.update(KEY, PATH, append("alice")),
        bob.update(KEY, PATH, append("bob")),
    )
    print(f"Document: {await alice.load(KEY, PATH)}")

    print("\n=== Failed Update Rolls Back ===")

    def broken(doc: JsonValue) -> JsonValue:
        raise ValueError("Invalid message payload")

    try:
        await alice.update(KEY, PATH, broken)
    except ValueError as exc:
        print(f"Update failed: {exc}")

    history = recovery.get_checkpoint_history(KEY)
    print(f"Checkpoints kept: {len(history)}")
    print(f"Recovered state: {recovery.recover_state(KEY)}")

    print("\n=== Error Stats ===")
    stats = handler.get_stats()
    print(f"Total: {stats.total}, by type: {stats.by_type}")

    print("\n✓ Demo complete")


if __name__ == "__main__":
    asyncio.run(main())
