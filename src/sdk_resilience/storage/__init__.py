"""
Versioned-store adapters and the revision-conflict save path.

The resilience layer consumes a remote store through the small
VersionedStore protocol. This package provides:
- An in-memory store with per-client revision tracking
- An S3 store using ETag compare-and-swap
- The conflict-retrying save used by everything that writes
- Recovery snapshot persistence on top of any VersionedStore
"""

from __future__ import annotations

from .memory import InMemoryVersionedStore, MemoryBackend
from .persistence import DEFAULT_SNAPSHOT_PATH, StorePersistence
from .protocols import VersionedStore
from .revision import (
    SaveReceipt,
    as_revision_conflict,
    is_revision_conflict,
    save_with_revision_retry,
)
from .s3_store import S3VersionedStore, retry_on_throttle


__all__ = [
    "VersionedStore",
    "InMemoryVersionedStore",
    "MemoryBackend",
    "S3VersionedStore",
    "retry_on_throttle",
    "StorePersistence",
    "DEFAULT_SNAPSHOT_PATH",
    "SaveReceipt",
    "as_revision_conflict",
    "is_revision_conflict",
    "save_with_revision_retry",
]
