"""
Client-side resilience and consistency layer for the compute-marketplace SDK.

Components:
- KeySerializer: per-key FIFO execution of async operations
- ErrorHandler / CircuitBreaker: classification, retry with backoff, fast-fail
- RecoveryManager: checksummed checkpoints, rollback, incomplete operations
- ConsistencyChecker: vector/state validation and atomic execution
- ResilientStore: all of the above around a versioned remote store
"""

from __future__ import annotations

from .circuit import CircuitBreaker, CircuitState
from .classifier import classify_error
from .clock import SYSTEM_CLOCK, Clock, SystemClock
from .config import (
    ConsistencyConfig,
    ErrorHandlerConfig,
    RecoveryConfig,
    build_consistency_config,
    build_error_handler_config,
    build_recovery_config,
)
from .consistency import (
    CheckRecord,
    CheckStats,
    ConsistencyChecker,
    ConsistencyReport,
    RepairEvent,
    ReportIssue,
    ValidationResult,
)
from .errors import (
    CheckpointCorruptedError,
    CheckpointNotFoundError,
    CircuitOpenError,
    ConcurrencyError,
    ErrorClassification,
    ErrorKind,
    ErrorRecord,
    InvalidDataError,
    NetworkError,
    OperationNotFoundError,
    ResilienceError,
    RevisionConflictError,
    SaveFailedError,
    StateValidationError,
    StorageError,
)
from .handler import ErrorHandler, ErrorStats
from .recovery import (
    Checkpoint,
    CheckpointMetadata,
    IncompleteOperation,
    RecoveryManager,
    RecoveryPersistence,
    RecoverySnapshot,
)
from .resilient_store import ResilientStore
from .result import Failure, Result, Success
from .serializer import KeySerializer


__all__ = [
    # Serialization
    "KeySerializer",
    # Errors and handling
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
    "classify_error",
    "ErrorHandler",
    "ErrorStats",
    "CircuitBreaker",
    "CircuitState",
    # Recovery
    "Checkpoint",
    "CheckpointMetadata",
    "IncompleteOperation",
    "RecoveryManager",
    "RecoveryPersistence",
    "RecoverySnapshot",
    # Consistency
    "ConsistencyChecker",
    "ConsistencyReport",
    "ValidationResult",
    "ReportIssue",
    "RepairEvent",
    "CheckRecord",
    "CheckStats",
    # Composition
    "ResilientStore",
    # Configuration and plumbing
    "ErrorHandlerConfig",
    "RecoveryConfig",
    "ConsistencyConfig",
    "build_error_handler_config",
    "build_recovery_config",
    "build_consistency_config",
    "Clock",
    "SystemClock",
    "SYSTEM_CLOCK",
    "Result",
    "Success",
    "Failure",
]
