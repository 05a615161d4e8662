"""
Shared Protocol definitions for the remote versioned store and S3.

Every module that needs a store or S3 client type imports it from here:
- revision.py / persistence.py (VersionedStore)
- s3_store.py (S3 client and session protocols)
"""

from __future__ import annotations

from types import TracebackType
from typing import Protocol

from botocore.config import Config


# ---------------------------------------------------------------------------
# Versioned store
# ---------------------------------------------------------------------------


class VersionedStore(Protocol):
    """
    Remote object store with optimistic concurrency.

    ``put`` is checked against the revision this client last observed for
    ``path`` and raises when a concurrent writer got there first, either as
    RevisionConflictError or as a foreign error the revision module knows
    how to recognize.
    """

    async def get(self, path: str) -> bytes | None:
        """Object bytes, or None when ``path`` does not exist."""
        ...

    async def put(self, path: str, data: bytes) -> str:
        """Write ``data`` and return the new revision identifier."""
        ...


# ---------------------------------------------------------------------------
# S3 client protocols
# ---------------------------------------------------------------------------


class S3ResponseProtocol(Protocol):
    """Protocol for S3 responses (get_object, put_object, head_object)."""

    def __getitem__(self, key: str) -> object: ...

    def get(self, key: str, default: object = ...) -> object: ...


class S3ClientProtocol(Protocol):
    """Subset of the async S3 client used by S3VersionedStore."""

    async def put_object(self, **kwargs: object) -> S3ResponseProtocol: ...
    async def get_object(self, **kwargs: object) -> S3ResponseProtocol: ...
    async def head_object(self, **kwargs: object) -> S3ResponseProtocol: ...


class AsyncContextManagerProtocol(Protocol):
    """Protocol for async context manager returned by session.client()."""

    async def __aenter__(self) -> S3ClientProtocol: ...
    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None: ...


class SessionProtocol(Protocol):
    """Protocol for aioboto3.Session."""

    def client(
        self,
        service_name: str,
        endpoint_url: str | None = ...,
        config: Config | None = ...,
        **kwargs: object,
    ) -> AsyncContextManagerProtocol: ...


__all__ = [
    "VersionedStore",
    "S3ResponseProtocol",
    "S3ClientProtocol",
    "AsyncContextManagerProtocol",
    "SessionProtocol",
]
