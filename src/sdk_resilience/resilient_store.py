"""
Resilient read/modify/write access to JSON documents in a versioned store.

Every mutation of a key runs, in order:
1. under the key's serializer slot (no concurrent local writers)
2. inside the error handler (retries, circuit breaker, error history)
3. inside a rollback scope of the recovery manager
4. as a conflict-retrying save, followed by a checkpoint of what was saved
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from typing import Callable, Mapping

from pydantic import JsonValue

from sdk_resilience.checksum import canonical_json
from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.consistency import ConsistencyChecker
from sdk_resilience.errors import InvalidDataError, RevisionConflictError, SaveFailedError
from sdk_resilience.handler import ErrorHandler
from sdk_resilience.recovery import RecoveryManager
from sdk_resilience.serializer import KeySerializer
from sdk_resilience.storage.protocols import VersionedStore
from sdk_resilience.storage.revision import SaveReceipt, save_with_revision_retry


_logger = logging.getLogger(__name__)


class ResilientStore:
    """
    Compose serializer, error handler, recovery manager and revision save.

    Usage:
        store = ResilientStore(S3VersionedStore("sdk-state"))
        await store.save("conversation:42", "conversations/42.json", {"messages": []})
        await store.update(
            "conversation:42",
            "conversations/42.json",
            lambda doc: {**(doc or {}), "title": "renamed"},
        )
    """

    def __init__(
        self,
        store: VersionedStore,
        *,
        handler: ErrorHandler | None = None,
        recovery: RecoveryManager | None = None,
        serializer: KeySerializer | None = None,
        checker: ConsistencyChecker | None = None,
        max_save_attempts: int = 3,
        save_base_delay: float = 0.1,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.store = store
        self.handler = handler or ErrorHandler(clock=clock)
        self.recovery = recovery or RecoveryManager(clock=clock)
        self.serializer = serializer or KeySerializer()
        self.checker = checker
        self.max_save_attempts = max_save_attempts
        self.save_base_delay = save_base_delay
        self._clock = clock

    async def _read(self, path: str) -> JsonValue:
        raw = await self.store.get(path)
        if raw is None:
            return None
        try:
            document: JsonValue = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidDataError(f"Stored document at {path} is not JSON: {exc}") from exc
        return document

    def _check(self, key: str, data: JsonValue) -> None:
        if self.checker is None or not isinstance(data, Mapping):
            return
        report = self.checker.generate_report(data)
        if not report.valid:
            details = "; ".join(issue.message for issue in report.errors)
            raise InvalidDataError(f"Refusing to save inconsistent state for {key}: {details}")

    async def _write(
        self, key: str, path: str, data: JsonValue, *, max_attempts: int | None = None
    ) -> SaveReceipt:
        self._check(key, data)
        try:
            encoded = canonical_json(data, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise InvalidDataError(f"State for {key} is not JSON: {exc}") from exc

        receipt = await save_with_revision_retry(
            self.store,
            path,
            encoded,
            max_attempts=max_attempts if max_attempts is not None else self.max_save_attempts,
            base_delay=self.save_base_delay,
            label=key,
            clock=self._clock,
        )
        await self.recovery.create_checkpoint(key, data)
        return receipt

    async def load(self, key: str, path: str) -> JsonValue:
        """Read the document at ``path``; None when it does not exist."""

        async def read() -> JsonValue:
            return await self._read(path)

        return await self.serializer.with_lock(
            key,
            lambda: self.handler.handle(read, context={"operation": "load", "key": key}),
        )

    async def save(self, key: str, path: str, data: JsonValue) -> SaveReceipt:
        """
        Overwrite the document at ``path`` with ``data``.

        Raises:
            InvalidDataError: ``data`` failed consistency checks or is not JSON
            SaveFailedError: The store kept rejecting the write
            CircuitOpenError: The handler's circuit is open
        """
        operation_id = f"save:{key}:{uuid.uuid4().hex}"

        async def attempt() -> SaveReceipt:
            return await self.recovery.execute_with_rollback(
                key, lambda: self._write(key, path, data)
            )

        async def run() -> SaveReceipt:
            await self.recovery.start_operation(operation_id, "save")
            receipt = await self.handler.handle(
                attempt, context={"operation": "save", "key": key, "path": path}
            )
            await self.recovery.complete_operation(operation_id)
            return receipt

        return await self.serializer.with_lock(key, run)

    async def update(
        self,
        key: str,
        path: str,
        mutate: Callable[[JsonValue], JsonValue],
    ) -> JsonValue:
        """
        Read, transform and save the document at ``path``.

        ``mutate`` receives a private copy of the current document (None if
        absent) and returns the new one. A revision conflict fails the
        attempt with RevisionConflictError, which the handler retries from a
        fresh read, so a concurrent update is not overwritten.

        Returns:
            The document as saved
        """
        operation_id = f"update:{key}:{uuid.uuid4().hex}"

        async def read_modify_write() -> JsonValue:
            current = await self._read(path)
            updated = mutate(copy.deepcopy(current))
            try:
                # Conflicts are retried by the handler from a fresh read.
                await self._write(key, path, updated, max_attempts=1)
            except SaveFailedError as exc:
                if isinstance(exc.cause, RevisionConflictError):
                    raise RevisionConflictError(path, "Concurrent update") from exc
                raise
            return updated

        async def attempt() -> JsonValue:
            return await self.recovery.execute_with_rollback(key, read_modify_write)

        async def run() -> JsonValue:
            await self.recovery.start_operation(operation_id, "update")
            document = await self.handler.handle(
                attempt, context={"operation": "update", "key": key, "path": path}
            )
            await self.recovery.complete_operation(operation_id)
            return document

        return await self.serializer.with_lock(key, run)

    async def restore(self, key: str, path: str, checkpoint_id: str | None = None) -> SaveReceipt:
        """Write a recovered checkpoint of ``key`` back to ``path``."""
        state = self.recovery.recover_state(key, checkpoint_id)
        _logger.info(f"Restoring {key} to {path} from checkpoint")
        return await self.save(key, path, state)


__all__ = ["ResilientStore"]
