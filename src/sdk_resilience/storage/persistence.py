"""Recovery snapshot persistence on top of a VersionedStore."""

from __future__ import annotations

import logging

from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.recovery import RecoverySnapshot, decode_snapshot, encode_snapshot
from sdk_resilience.result import Failure, Success
from sdk_resilience.storage.protocols import VersionedStore
from sdk_resilience.storage.revision import save_with_revision_retry


_logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_PATH = "recovery/state.json"


class StorePersistence:
    """
    RecoveryPersistence writing one JSON document to a versioned store.

    Example:
        persistence = StorePersistence(S3VersionedStore("sdk-state"))
        recovery = RecoveryManager(RecoveryConfig(auto_recover=True), persistence=persistence)
    """

    def __init__(
        self,
        store: VersionedStore,
        path: str = DEFAULT_SNAPSHOT_PATH,
        *,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.store = store
        self.path = path
        self._clock = clock

    async def load(self) -> RecoverySnapshot | None:
        """
        Raises:
            InvalidDataError: The stored document is not a valid snapshot
        """
        raw = await self.store.get(self.path)
        if raw is None:
            return None
        match decode_snapshot(raw):
            case Success(snapshot):
                return snapshot
            case Failure(error):
                raise error

    async def save(self, snapshot: RecoverySnapshot) -> None:
        receipt = await save_with_revision_retry(
            self.store,
            self.path,
            encode_snapshot(snapshot),
            label="recovery snapshot",
            clock=self._clock,
        )
        _logger.debug(f"Saved recovery snapshot revision {receipt.revision} ({receipt.size} bytes)")


__all__ = ["StorePersistence", "DEFAULT_SNAPSHOT_PATH"]
