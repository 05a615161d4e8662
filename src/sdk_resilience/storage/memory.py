"""In-memory versioned store with per-client revision tracking."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from sdk_resilience.errors import RevisionConflictError


@dataclass
class MemoryBackend:
    """Shared object table; several clients on one backend act as concurrent writers."""

    objects: dict[str, tuple[int, bytes]] = field(default_factory=dict)

    def revision_of(self, path: str) -> int:
        entry = self.objects.get(path)
        return entry[0] if entry is not None else 0


class InMemoryVersionedStore:
    """
    VersionedStore kept in process memory.

    Each client remembers the revision it last saw per path. A put against an
    older revision raises RevisionConflictError and refreshes the remembered
    revision, so an immediate retry by the same client succeeds. A client
    that never touched a path writes unconditionally.

    Example:
        backend = MemoryBackend()
        alice, bob = InMemoryVersionedStore(backend), InMemoryVersionedStore(backend)
        await alice.get("doc"); await bob.get("doc")
        await alice.put("doc", b"a")   # revision 1
        await bob.put("doc", b"b")     # RevisionConflictError
    """

    def __init__(self, backend: MemoryBackend | None = None, *, latency: float = 0.0) -> None:
        self.backend = backend if backend is not None else MemoryBackend()
        self.latency = latency
        self._seen: dict[str, int] = {}

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    async def get(self, path: str) -> bytes | None:
        await self._round_trip()
        entry = self.backend.objects.get(path)
        if entry is None:
            self._seen[path] = 0
            return None
        revision, data = entry
        self._seen[path] = revision
        return data

    async def put(self, path: str, data: bytes) -> str:
        await self._round_trip()
        current = self.backend.revision_of(path)
        seen = self._seen.get(path, current)
        if seen < current:
            self._seen[path] = current
            raise RevisionConflictError(path, f"Revision number too low ({seen} < {current})")

        revision = current + 1
        self.backend.objects[path] = (revision, bytes(data))
        self._seen[path] = revision
        return str(revision)


__all__ = ["MemoryBackend", "InMemoryVersionedStore"]
