"""
Revision-conflict detection and the retrying save path.

A versioned store rejects a write made against a stale revision. Depending
on the backend that rejection arrives as RevisionConflictError, as a
botocore ClientError with a precondition code, or as an untyped error whose
message names the conflict. This module is the only place those raw forms
are recognized.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from botocore.exceptions import ClientError

from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.errors import RevisionConflictError, SaveFailedError
from sdk_resilience.storage.protocols import VersionedStore


_logger = logging.getLogger(__name__)

_CONFLICT_MARKERS = ("revision number too low", "directorytransactionexception")
_CONFLICT_CODES = frozenset({"PreconditionFailed", "412", "ConditionalRequestConflict"})


@dataclass(frozen=True)
class SaveReceipt:
    """What a successful save wrote."""

    path: str
    revision: str
    size: int
    checksum: str
    saved_at: float
    attempts: int


def is_revision_conflict(error: BaseException) -> bool:
    if isinstance(error, RevisionConflictError):
        return True
    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        if code in _CONFLICT_CODES:
            return True
    message = str(error).lower()
    return any(marker in message for marker in _CONFLICT_MARKERS)


def as_revision_conflict(error: BaseException, path: str) -> RevisionConflictError | None:
    """Translate a raw conflict into RevisionConflictError; None if it is not one."""
    if isinstance(error, RevisionConflictError):
        return error
    if is_revision_conflict(error):
        return RevisionConflictError(path, str(error))
    return None


async def save_with_revision_retry(
    store: VersionedStore,
    path: str,
    data: bytes,
    *,
    max_attempts: int = 3,
    base_delay: float = 0.1,
    label: str = "object",
    clock: Clock = SYSTEM_CLOCK,
) -> SaveReceipt:
    """
    Write ``data`` to ``path``, retrying revision conflicts only.

    Before the n-th retry the call sleeps ``base_delay * 2**n`` seconds
    (0.2s then 0.4s with the defaults). Any other store error ends the save
    at once.

    Args:
        store: Target versioned store
        path: Object path
        data: Bytes to write
        max_attempts: Total number of put attempts, including the first
        base_delay: Backoff base in seconds
        label: Human-readable name used in the failure message
        clock: Time source for the backoff sleep

    Returns:
        SaveReceipt describing the written object

    Raises:
        SaveFailedError: "Failed to save <label>: <cause>", chained from the
            last store error
    """
    if max_attempts <= 0:
        raise ValueError(f"max_attempts must be positive, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        try:
            revision = await store.put(path, data)
        except Exception as exc:
            conflict = as_revision_conflict(exc, path)
            if conflict is None:
                raise SaveFailedError(label, exc) from exc
            if attempt >= max_attempts:
                _logger.warning(f"Giving up on {label} at {path} after {attempt} conflicts")
                raise SaveFailedError(label, conflict) from exc
            delay = base_delay * (2**attempt)
            _logger.warning(
                f"Revision conflict saving {label} at {path} "
                f"(attempt {attempt}/{max_attempts}), retrying in {delay:.3f}s"
            )
            await clock.sleep(delay)
            continue

        return SaveReceipt(
            path=path,
            revision=revision,
            size=len(data),
            checksum=hashlib.sha256(data).hexdigest(),
            saved_at=clock.time(),
            attempts=attempt,
        )

    raise RuntimeError("Unexpected revision retry failure")


__all__ = [
    "SaveReceipt",
    "is_revision_conflict",
    "as_revision_conflict",
    "save_with_revision_retry",
]
