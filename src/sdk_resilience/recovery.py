"""
Checkpoint & recovery manager.

Keeps a bounded, append-ordered history of checksummed snapshots per key,
restores history when a guarded operation fails, and tracks operations that
started but never completed so a later session can retry them.

Implements:
- Checkpoints with SHA-256 checksums over canonical JSON
- FIFO eviction beyond ``max_checkpoints`` and on-demand retention sweeps
- Rollback of a key's history around a failing operation (nestable)
- Incomplete-operation tracking and retry
- Optional persistence of the whole state, reloaded on entry when
  ``auto_recover`` is set
"""

from __future__ import annotations

import copy
import logging
import uuid
from types import TracebackType
from typing import Awaitable, Callable, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, JsonValue, ValidationError

from sdk_resilience.checksum import canonical_json, sha256_checksum
from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.config import RecoveryConfig
from sdk_resilience.errors import (
    CheckpointCorruptedError,
    CheckpointNotFoundError,
    InvalidDataError,
    OperationNotFoundError,
    StateValidationError,
)
from sdk_resilience.result import Failure, Result, Success
from sdk_resilience.serializer import KeySerializer


_logger = logging.getLogger(__name__)

R = TypeVar("R")

_PERSIST_KEY = "__recovery_snapshot__"


class Checkpoint(BaseModel):
    """A checksummed snapshot of caller-defined state for one key."""

    checkpoint_id: str
    key: str
    data: JsonValue
    created_at: float
    checksum: str = Field(min_length=64, max_length=64)
    data_size: int = Field(ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    def metadata(self) -> CheckpointMetadata:
        return CheckpointMetadata(
            checkpoint_id=self.checkpoint_id,
            created_at=self.created_at,
            checksum=self.checksum,
            data_size=self.data_size,
        )


class CheckpointMetadata(BaseModel):
    """Checkpoint fields without the snapshot payload."""

    checkpoint_id: str
    created_at: float
    checksum: str
    data_size: int

    model_config = ConfigDict(frozen=True, extra="forbid")


class IncompleteOperation(BaseModel):
    """An operation that started but has not been marked complete."""

    operation_id: str
    type: str
    started_at: float

    model_config = ConfigDict(frozen=True, extra="forbid")


class RecoverySnapshot(BaseModel):
    """Everything RecoveryManager persists between sessions."""

    checkpoints: dict[str, list[Checkpoint]] = Field(default_factory=dict)
    incomplete_operations: list[IncompleteOperation] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")


def decode_snapshot(raw: bytes) -> Result[RecoverySnapshot, InvalidDataError]:
    """Parse persisted snapshot bytes, returning Failure on malformed input."""
    try:
        return Success(RecoverySnapshot.model_validate_json(raw))
    except ValidationError as exc:
        return Failure(InvalidDataError(f"Malformed recovery snapshot: {exc}"))


def encode_snapshot(snapshot: RecoverySnapshot) -> bytes:
    return snapshot.model_dump_json(indent=2).encode("utf-8")


class RecoveryPersistence(Protocol):
    """Durable home for a RecoverySnapshot."""

    async def load(self) -> RecoverySnapshot | None: ...

    async def save(self, snapshot: RecoverySnapshot) -> None: ...


def checkpoint_is_valid(checkpoint: Checkpoint) -> bool:
    """Recompute the checksum of ``checkpoint.data`` and compare."""
    return sha256_checksum(checkpoint.data) == checkpoint.checksum


class RecoveryManager:
    """
    Versioned, checksummed checkpoints with rollback and crash recovery.

    Reads (history, metadata, recovery, validation) are synchronous.
    Mutations are coroutines because they persist the new state when a
    persistence backend is configured.

    Usage:
        async with RecoveryManager(RecoveryConfig(max_checkpoints=5)) as recovery:
            await recovery.create_checkpoint("job:7", {"stage": "uploaded"})
            await recovery.execute_with_rollback("job:7", submit_job)
            state = recovery.recover_state("job:7")
    """

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        *,
        persistence: RecoveryPersistence | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.config = config or RecoveryConfig()
        self._persistence = persistence
        self._clock = clock
        self._checkpoints: dict[str, list[Checkpoint]] = {}
        self._incomplete: dict[str, IncompleteOperation] = {}
        self._writes = KeySerializer()

    async def __aenter__(self) -> RecoveryManager:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        return None

    async def open(self) -> None:
        """Load persisted state when ``auto_recover`` is enabled."""
        if self.config.auto_recover:
            await self.restore()

    async def restore(self) -> RecoverySnapshot | None:
        """
        Replace in-memory state with the persisted snapshot, if any.

        Returns:
            The loaded snapshot, or None when nothing was persisted or no
            persistence backend is configured
        """
        if self._persistence is None:
            return None
        snapshot = await self._persistence.load()
        if snapshot is None:
            _logger.info("No persisted recovery snapshot found")
            return None

        self._checkpoints = {key: list(history) for key, history in snapshot.checkpoints.items()}
        self._incomplete = {op.operation_id: op for op in snapshot.incomplete_operations}
        _logger.info(
            f"Restored {sum(len(h) for h in self._checkpoints.values())} checkpoints "
            f"for {len(self._checkpoints)} keys and "
            f"{len(self._incomplete)} incomplete operations"
        )
        return snapshot

    def snapshot(self) -> RecoverySnapshot:
        return RecoverySnapshot(
            checkpoints={key: list(history) for key, history in self._checkpoints.items()},
            incomplete_operations=list(self._incomplete.values()),
        )

    async def _persist(self) -> None:
        persistence = self._persistence
        if persistence is None:
            return

        async def write() -> None:
            # Snapshot at write time so queued writes always store the latest state.
            await persistence.save(self.snapshot())
            _logger.debug("Persisted recovery snapshot")

        await self._writes.with_lock(_PERSIST_KEY, write)

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    def _is_expired(self, checkpoint: Checkpoint) -> bool:
        retention = self.config.checkpoint_retention
        return retention is not None and self._clock.time() - checkpoint.created_at > retention

    def _live_history(self, key: str) -> list[Checkpoint]:
        return [cp for cp in self._checkpoints.get(key, []) if not self._is_expired(cp)]

    async def create_checkpoint(self, key: str, data: JsonValue) -> Checkpoint:
        """
        Snapshot ``data`` as the newest checkpoint for ``key``.

        Args:
            key: Resource identifier
            data: JSON-compatible state; it is deep-copied

        Returns:
            The stored checkpoint

        Raises:
            InvalidDataError: ``data`` is not JSON-compatible
        """
        try:
            snapshot_data = copy.deepcopy(data)
            encoded = canonical_json(snapshot_data, allow_nan=False)
            checkpoint = Checkpoint(
                checkpoint_id=uuid.uuid4().hex,
                key=key,
                data=snapshot_data,
                created_at=self._clock.time(),
                checksum=sha256_checksum(snapshot_data),
                data_size=len(encoded.encode("utf-8")),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidDataError(f"Checkpoint data for key {key} is not JSON: {exc}") from exc

        history = self._checkpoints.setdefault(key, [])
        history.append(checkpoint)
        while len(history) > self.config.max_checkpoints:
            evicted = history.pop(0)
            _logger.debug(f"Evicted checkpoint {evicted.checkpoint_id} for key {key}")

        _logger.debug(f"Created checkpoint {checkpoint.checkpoint_id} for key {key}")
        await self._persist()
        return checkpoint

    def should_checkpoint(self, key: str) -> bool:
        """True when ``checkpoint_interval`` has elapsed since the newest checkpoint."""
        interval = self.config.checkpoint_interval
        history = self._live_history(key)
        if interval is None or not history:
            return True
        return self._clock.time() - history[-1].created_at >= interval

    async def create_checkpoint_if_due(self, key: str, data: JsonValue) -> Checkpoint | None:
        if not self.should_checkpoint(key):
            return None
        return await self.create_checkpoint(key, data)

    def get_checkpoint(self, key: str) -> JsonValue | None:
        """Data of the newest live checkpoint, or None."""
        history = self._live_history(key)
        return copy.deepcopy(history[-1].data) if history else None

    def get_checkpoint_metadata(self, key: str) -> CheckpointMetadata | None:
        history = self._live_history(key)
        return history[-1].metadata() if history else None

    def get_checkpoint_history(self, key: str) -> list[Checkpoint]:
        """Live checkpoints for ``key``, oldest first."""
        return [cp.model_copy(deep=True) for cp in self._live_history(key)]

    def _find(self, key: str, checkpoint_id: str | None) -> Checkpoint:
        history = self._live_history(key)
        if not history:
            raise CheckpointNotFoundError(key)
        if checkpoint_id is None:
            return history[-1]
        for checkpoint in history:
            if checkpoint.checkpoint_id == checkpoint_id:
                return checkpoint
        raise CheckpointNotFoundError(key, checkpoint_id)

    def validate_checkpoint(self, key: str, checkpoint_id: str | None = None) -> bool:
        """
        Recompute a checkpoint's checksum.

        Raises:
            CheckpointNotFoundError: No such live checkpoint
        """
        return checkpoint_is_valid(self._find(key, checkpoint_id))

    def recover_state(self, key: str, checkpoint_id: str | None = None) -> JsonValue:
        """
        Return the data of the newest (or the named) checkpoint.

        With ``skip_corrupted`` and no ``checkpoint_id``, corrupted
        checkpoints are skipped newest to oldest.

        Raises:
            CheckpointNotFoundError: No live checkpoint (or id) for ``key``
            CheckpointCorruptedError: Checksum mismatch and skipping is off
            StateValidationError: ``state_validator`` rejected the data
        """
        checkpoint = self._find(key, checkpoint_id)

        if not checkpoint_is_valid(checkpoint):
            if not self.config.skip_corrupted or checkpoint_id is not None:
                raise CheckpointCorruptedError(
                    key,
                    checkpoint.checkpoint_id,
                    checkpoint.checksum,
                    sha256_checksum(checkpoint.data),
                )
            checkpoint = self._newest_valid(key)

        data = copy.deepcopy(checkpoint.data)
        validator = self.config.state_validator
        if validator is not None and not validator(data):
            raise StateValidationError(key)

        _logger.info(f"Recovered state for key {key} from checkpoint {checkpoint.checkpoint_id}")
        return data

    def _newest_valid(self, key: str) -> Checkpoint:
        for checkpoint in reversed(self._live_history(key)):
            if checkpoint_is_valid(checkpoint):
                return checkpoint
            _logger.warning(
                f"Skipping corrupted checkpoint {checkpoint.checkpoint_id} for key {key}"
            )
        raise CheckpointNotFoundError(key)

    def recover_all(self) -> dict[str, JsonValue]:
        """Latest recoverable state of every key that has one."""
        recovered: dict[str, JsonValue] = {}
        for key in list(self._checkpoints):
            try:
                recovered[key] = self.recover_state(key)
            except CheckpointNotFoundError:
                continue
        return recovered

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    async def execute_with_rollback(self, key: str, operation: Callable[[], Awaitable[R]]) -> R:
        """
        Run ``operation``; on failure restore ``key``'s checkpoint history.

        The history as it was before the call is kept aside. If the
        operation raises, the history (including entries evicted meanwhile)
        is put back exactly and the error propagates. On success, any
        checkpoints the operation created stay. The call itself never adds
        history entries, and nested calls roll back to their own start.

        Callers running concurrent rollback scopes on one key should
        serialize them (see KeySerializer).
        """
        baseline = list(self._checkpoints.get(key, []))
        try:
            return await operation()
        except BaseException:
            if baseline:
                self._checkpoints[key] = baseline
            else:
                self._checkpoints.pop(key, None)
            _logger.info(f"Rolled back key {key} to {len(baseline)} checkpoints")
            await self._persist()
            raise

    # -------------------------------------------------------------------------
    # Incomplete operations
    # -------------------------------------------------------------------------

    async def start_operation(self, operation_id: str, operation_type: str) -> IncompleteOperation:
        record = IncompleteOperation(
            operation_id=operation_id, type=operation_type, started_at=self._clock.time()
        )
        self._incomplete[operation_id] = record
        await self._persist()
        return record

    async def complete_operation(self, operation_id: str) -> bool:
        """Clear an operation record; False if it was not tracked."""
        if self._incomplete.pop(operation_id, None) is None:
            return False
        await self._persist()
        return True

    def get_incomplete_operations(self) -> list[IncompleteOperation]:
        return sorted(self._incomplete.values(), key=lambda op: op.started_at)

    async def retry_incomplete_operation(
        self, operation_id: str, operation: Callable[[], Awaitable[R]]
    ) -> R:
        """
        Re-run a tracked operation and clear its record once it succeeds.

        Raises:
            OperationNotFoundError: ``operation_id`` is not tracked
            Exception: Whatever ``operation`` raises; the record is kept
        """
        record = self._incomplete.get(operation_id)
        if record is None:
            raise OperationNotFoundError(operation_id)

        _logger.info(f"Retrying incomplete {record.type} operation {operation_id}")
        result = await operation()
        await self.complete_operation(operation_id)
        return result

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    async def cleanup_old_checkpoints(self) -> int:
        """Drop checkpoints older than ``checkpoint_retention``; returns the count."""
        if self.config.checkpoint_retention is None:
            return 0

        removed = 0
        for key in list(self._checkpoints):
            history = self._checkpoints[key]
            live = [cp for cp in history if not self._is_expired(cp)]
            removed += len(history) - len(live)
            if live:
                self._checkpoints[key] = live
            else:
                del self._checkpoints[key]

        if removed:
            _logger.info(f"Removed {removed} expired checkpoints")
            await self._persist()
        return removed

    async def clear_checkpoints(self, key: str) -> None:
        if self._checkpoints.pop(key, None) is not None:
            await self._persist()

    async def clear_all(self) -> None:
        """Forget every checkpoint and incomplete operation."""
        self._checkpoints.clear()
        self._incomplete.clear()
        await self._persist()


__all__ = [
    "Checkpoint",
    "CheckpointMetadata",
    "IncompleteOperation",
    "RecoverySnapshot",
    "RecoveryPersistence",
    "RecoveryManager",
    "checkpoint_is_valid",
    "decode_snapshot",
    "encode_snapshot",
]
