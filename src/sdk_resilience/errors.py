"""Exception hierarchy and error classification for the resilience layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Literal


ErrorKind = Literal["network", "storage", "validation", "concurrency", "system"]


@dataclass(frozen=True)
class ErrorClassification:
    """How a failure should be treated by the retry loop."""

    kind: ErrorKind
    recoverable: bool
    retryable: bool

    @staticmethod
    def for_kind(kind: ErrorKind) -> ErrorClassification:
        """Default recoverable/retryable flags for an error kind."""
        return _DEFAULT_CLASSIFICATIONS[kind]


_DEFAULT_CLASSIFICATIONS: dict[ErrorKind, ErrorClassification] = {
    "network": ErrorClassification(kind="network", recoverable=True, retryable=True),
    "storage": ErrorClassification(kind="storage", recoverable=True, retryable=False),
    "validation": ErrorClassification(kind="validation", recoverable=False, retryable=False),
    "concurrency": ErrorClassification(kind="concurrency", recoverable=True, retryable=True),
    "system": ErrorClassification(kind="system", recoverable=False, retryable=False),
}


@dataclass(frozen=True)
class ErrorRecord:
    """A terminal failure as kept in the error history."""

    message: str
    name: str
    context: dict[str, object]
    timestamp: float
    stack: str | None


class ResilienceError(Exception):
    """Base exception for all errors raised by this package."""

    kind: ClassVar[ErrorKind] = "system"

    @property
    def classification(self) -> ErrorClassification:
        return ErrorClassification.for_kind(self.kind)


class NetworkError(ResilienceError):
    """Transport-level failure talking to a remote dependency."""

    kind: ClassVar[ErrorKind] = "network"


class StorageError(ResilienceError):
    """Remote storage rejected or failed an operation."""

    kind: ClassVar[ErrorKind] = "storage"


class InvalidDataError(ResilienceError):
    """Input or state failed validation."""

    kind: ClassVar[ErrorKind] = "validation"


class ConcurrencyError(ResilienceError):
    """A concurrent writer invalidated this operation."""

    kind: ClassVar[ErrorKind] = "concurrency"


class RevisionConflictError(ConcurrencyError):
    """The store rejected a write made against a stale revision."""

    def __init__(self, path: str, message: str = "Revision number too low") -> None:
        self.path = path
        super().__init__(f"{message}: {path}")


class CircuitOpenError(ResilienceError):
    """Raised without invoking the operation while the circuit is open."""

    def __init__(self, name: str, failures: int, retry_in: float) -> None:
        self.name = name
        self.failures = failures
        self.retry_in = retry_in
        super().__init__(
            f"Circuit breaker is open: '{name}' after {failures} failures, "
            f"retry in {retry_in:.2f}s"
        )


class SaveFailedError(StorageError):
    """A save gave up after conflicts or a non-retryable store error."""

    def __init__(self, label: str, cause: BaseException) -> None:
        self.label = label
        self.cause = cause
        super().__init__(f"Failed to save {label}: {cause}")


class CheckpointNotFoundError(StorageError):
    """No usable checkpoint exists for the requested key or id."""

    def __init__(self, key: str, checkpoint_id: str | None = None) -> None:
        self.key = key
        self.checkpoint_id = checkpoint_id
        if checkpoint_id is None:
            super().__init__(f"No checkpoint found for key: {key}")
        else:
            super().__init__(f"No checkpoint found for key {key} with id {checkpoint_id}")


class CheckpointCorruptedError(StorageError):
    """Stored checkpoint data no longer matches its checksum."""

    def __init__(self, key: str, checkpoint_id: str, expected: str, actual: str) -> None:
        self.key = key
        self.checkpoint_id = checkpoint_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checkpoint {checkpoint_id} for key {key} is corrupted: "
            f"expected checksum {expected[:8]}, got {actual[:8]}"
        )


class StateValidationError(InvalidDataError):
    """Recovered state was rejected by the configured validator."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Recovered state for key {key} failed validation")


class OperationNotFoundError(InvalidDataError):
    """No incomplete operation is tracked under the given id."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"No incomplete operation found: {operation_id}")


__all__ = [
    "ErrorKind",
    "ErrorClassification",
    "ErrorRecord",
    "ResilienceError",
    "NetworkError",
    "StorageError",
    "InvalidDataError",
    "ConcurrencyError",
    "RevisionConflictError",
    "CircuitOpenError",
    "SaveFailedError",
    "CheckpointNotFoundError",
    "CheckpointCorruptedError",
    "StateValidationError",
    "OperationNotFoundError",
]
