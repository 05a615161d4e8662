"""
Consistency checker for vector collections and their denormalized state.

Vectors are plain mappings of the shape ``{"id": str, "values": [float, ...],
"metadata": {...}}`` as they come off the wire; nothing here assumes they
were produced by trusted code.

Implements:
- Structural validation (ids, numeric finite values, dimensions, uniqueness)
- SHA-256 checksums of JSON-compatible data
- Atomic multi-step execution with all-or-nothing completion bookkeeping
- State validation (counter drift, count regressions, references, index)
  with optional in-place repair
- Sequential and thread-parallel batch validation
- Aggregated reports, check history and statistics
"""

from __future__ import annotations

import asyncio
import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal, Mapping, MutableMapping, Sequence

import numpy as np
from pydantic import JsonValue

from sdk_resilience.checksum import sha256_checksum
from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.config import ConsistencyConfig


_logger = logging.getLogger(__name__)

Severity = Literal["warning", "error", "critical"]
Vector = Mapping[str, object]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single validator."""

    valid: bool
    errors: list[str] = field(default_factory=list)

    @staticmethod
    def from_errors(errors: list[str]) -> ValidationResult:
        return ValidationResult(valid=not errors, errors=errors)


@dataclass(frozen=True)
class ReportIssue:
    check: str
    message: str
    severity: Severity


@dataclass(frozen=True)
class ConsistencyReport:
    """Aggregated outcome of several checks over one state."""

    valid: bool
    errors: list[ReportIssue]
    repairs: list[str]
    checks: dict[str, bool]
    timestamp: float


@dataclass(frozen=True)
class RepairEvent:
    """Notification sent to repair observers for every applied repair."""

    type: str
    action: str
    detail: str


@dataclass(frozen=True)
class CheckRecord:
    name: str
    valid: bool
    issue_count: int
    timestamp: float


@dataclass(frozen=True)
class CheckStats:
    total_checks: int
    failed_checks: int
    success_rate: float


RepairObserver = Callable[[RepairEvent], None]

# (checker, completions pending in the innermost running execute_atomic call)
_ATOMIC_FRAME: ContextVar[tuple[ConsistencyChecker, list[str]] | None] = ContextVar(
    "sdk_resilience_atomic_frame", default=None
)


def _vector_id(vector: Vector) -> object:
    return vector.get("id")


def _vector_values(vector: Vector) -> object:
    return vector.get("values")


def _is_array(values: object) -> bool:
    return isinstance(values, (list, tuple, np.ndarray))


def _finite_values(values: object) -> bool | None:
    """True/False for numeric arrays, None when values are not numeric."""
    if isinstance(values, np.ndarray):
        if values.dtype.kind not in "iuf":
            return None
        array = values.astype(np.float64)
    elif isinstance(values, (list, tuple)) and all(
        isinstance(x, (int, float)) and not isinstance(x, bool) for x in values
    ):
        try:
            array = np.asarray(values, dtype=np.float64)
        except OverflowError:
            # Integers beyond float64 range
            return False
    else:
        return None
    return bool(np.all(np.isfinite(array)))


def _string_ids(vectors: Sequence[Vector]) -> list[str]:
    """Ids usable as set keys; malformed ids are reported separately."""
    return [vector_id for vector_id in map(_vector_id, vectors) if isinstance(vector_id, str)]


def _folder_of(vector: Vector) -> object:
    metadata = vector.get("metadata")
    if isinstance(metadata, Mapping):
        return metadata.get("folder_id")
    return None


class ConsistencyChecker:
    """
    Structural and referential validation plus atomic execution.

    Usage:
        checker = ConsistencyChecker(ConsistencyConfig(auto_repair=True))
        checker.add_repair_observer(lambda event: audit.append(event))
        report = checker.check_state_consistency(state)
        if not report.valid:
            raise InvalidDataError(report.errors[0].message)
    """

    def __init__(
        self,
        config: ConsistencyConfig | None = None,
        *,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.config = config or ConsistencyConfig()
        self._clock = clock
        self._history: list[CheckRecord] = []
        self._completed: list[str] = []
        self._observers: list[RepairObserver] = []
        self._last_vector_count: int | None = None

    # -------------------------------------------------------------------------
    # Structural validation
    # -------------------------------------------------------------------------

    def validate_vector(self, vector: Vector) -> ValidationResult:
        errors: list[str] = []

        vector_id = _vector_id(vector)
        if not isinstance(vector_id, str) or not vector_id:
            errors.append("Vector must have a valid string ID")

        values = _vector_values(vector)
        if not _is_array(values):
            errors.append("Vector values must be an array")
        else:
            match _finite_values(values):
                case None:
                    errors.append("Vector values must be numeric")
                case False:
                    errors.append("Vector contains NaN values")
                case True:
                    pass

        return ValidationResult.from_errors(errors)

    def validate_dimensions(self, vectors: Sequence[Vector]) -> ValidationResult:
        dimensions = {
            len(values)
            for values in (_vector_values(v) for v in vectors)
            if isinstance(values, (list, tuple, np.ndarray))
        }
        if len(dimensions) > 1:
            return ValidationResult.from_errors(
                [f"Inconsistent vector dimensions: found {sorted(dimensions)}"]
            )
        return ValidationResult.from_errors([])

    def validate_unique_ids(self, vectors: Sequence[Vector]) -> ValidationResult:
        seen: set[str] = set()
        reported: set[str] = set()
        errors: list[str] = []
        for vector_id in _string_ids(vectors):
            if vector_id in seen and vector_id not in reported:
                errors.append(f"Duplicate vector ID: {vector_id}")
                reported.add(vector_id)
            seen.add(vector_id)
        return ValidationResult.from_errors(errors)

    # -------------------------------------------------------------------------
    # Checksums
    # -------------------------------------------------------------------------

    def compute_checksum(self, data: JsonValue) -> str:
        return sha256_checksum(data)

    def verify_checksum(self, data: JsonValue, expected: str) -> bool:
        return sha256_checksum(data) == expected

    # -------------------------------------------------------------------------
    # Atomic execution
    # -------------------------------------------------------------------------

    async def execute_atomic(
        self, operations: Sequence[Callable[[], Awaitable[object]]]
    ) -> list[object]:
        """
        Run ``operations`` in order with all-or-nothing completion bookkeeping.

        Each successful step is recorded as ``op_<index>`` in a pending list.
        When every step succeeds the pending entries are committed, either to
        the enclosing ``execute_atomic`` call (nested use) or to
        ``get_completed_operations()``. When a step raises, the pending
        entries of this call are discarded and the error propagates. Side
        effects of steps that already ran are not undone.

        Returns:
            Step results in order; a nested call's result list appears as a
            single element of the outer list
        """
        frame = _ATOMIC_FRAME.get()
        parent = frame[1] if frame is not None and frame[0] is self else None

        pending: list[str] = []
        token = _ATOMIC_FRAME.set((self, pending))
        try:
            results: list[object] = []
            for index, operation in enumerate(operations):
                results.append(await operation())
                pending.append(f"op_{index}")
        except Exception as exc:
            _logger.warning(
                f"Atomic execution failed after {len(pending)}/{len(operations)} steps: {exc}"
            )
            raise
        finally:
            _ATOMIC_FRAME.reset(token)

        if parent is not None:
            parent.extend(pending)
        else:
            self._completed.extend(pending)
        return results

    def get_completed_operations(self) -> list[str]:
        return list(self._completed)

    # -------------------------------------------------------------------------
    # State validation
    # -------------------------------------------------------------------------

    def add_repair_observer(self, observer: RepairObserver) -> None:
        self._observers.append(observer)

    def remove_repair_observer(self, observer: RepairObserver) -> None:
        self._observers.remove(observer)

    def _notify_repair(self, event: RepairEvent) -> None:
        _logger.info(f"Repaired {event.type}: {event.detail}")
        for observer in list(self._observers):
            observer(event)

    def check_state_consistency(self, state: MutableMapping[str, object]) -> ConsistencyReport:
        """
        Validate counters of a stored collection state.

        ``state`` may carry ``vector_count`` (authoritative), ``vectors`` and
        ``metadata.count`` (denormalized). A drifted ``metadata.count`` is
        fixed in place when repairs are enabled; otherwise it is an error.
        A ``vector_count`` lower than in the previous call is flagged.
        """
        issues: list[ReportIssue] = []
        repairs: list[str] = []
        checks: dict[str, bool] = {}

        if not any(name in state for name in ("vector_count", "vectors", "metadata")):
            issues.append(ReportIssue("structure", "Invalid state structure", "error"))
            checks["structure"] = False
            return self._finish("state_consistency", issues, repairs, checks)
        checks["structure"] = True

        vectors = state.get("vectors")
        raw_count = state.get("vector_count")
        vector_count = (
            raw_count
            if isinstance(raw_count, int)
            else len(vectors) if isinstance(vectors, (list, tuple)) else None
        )

        if vector_count is not None:
            previous = self._last_vector_count
            regressed = previous is not None and vector_count < previous
            checks["count_regression"] = not regressed
            if regressed:
                issues.append(
                    ReportIssue(
                        "count_regression",
                        f"Vector count decreased unexpectedly: {previous} -> {vector_count}",
                        "error",
                    )
                )
            self._last_vector_count = vector_count

        metadata = state.get("metadata")
        recorded = metadata.get("count") if isinstance(metadata, Mapping) else None
        if vector_count is not None and isinstance(recorded, int) and recorded != vector_count:
            if self.config.repairs_enabled and isinstance(metadata, MutableMapping):
                metadata["count"] = vector_count
                repairs.append(f"Updated metadata count to {vector_count}")
                self._notify_repair(
                    RepairEvent(
                        type="count_mismatch",
                        action="Updated metadata count",
                        detail=f"{recorded} -> {vector_count}",
                    )
                )
                checks["count_mismatch"] = True
            else:
                issues.append(
                    ReportIssue(
                        "count_mismatch",
                        f"Vector count mismatch: metadata says {recorded}, actual {vector_count}",
                        "error",
                    )
                )
                checks["count_mismatch"] = False
        else:
            checks["count_mismatch"] = True

        return self._finish("state_consistency", issues, repairs, checks)

    def validate_references(
        self, vectors: Sequence[Vector], folders: Sequence[Mapping[str, object]]
    ) -> ValidationResult:
        folder_ids = {folder.get("id") for folder in folders}
        errors = [
            f"Invalid folder reference: {folder_id}"
            for folder_id in (_folder_of(v) for v in vectors)
            if folder_id is not None and folder_id not in folder_ids
        ]
        return ValidationResult.from_errors(errors)

    def check_index_integrity(
        self, index: Mapping[str, object], vectors: Sequence[Vector]
    ) -> ValidationResult:
        vector_ids = set(_string_ids(vectors))
        errors = [
            f"Index contains non-existent ID: {indexed_id}"
            for indexed_id in index
            if indexed_id not in vector_ids
        ]
        return ValidationResult.from_errors(errors)

    # -------------------------------------------------------------------------
    # Batches and reports
    # -------------------------------------------------------------------------

    def validate_batch(self, datasets: Sequence[Mapping[str, object]]) -> list[ConsistencyReport]:
        """One report per dataset, in input order."""
        return [self.generate_report(dataset) for dataset in datasets]

    async def validate_batch_parallel(
        self, datasets: Sequence[Mapping[str, object]]
    ) -> list[ConsistencyReport]:
        """Report on each dataset in a worker thread; results stay index-aligned."""
        return list(
            await asyncio.gather(
                *(asyncio.to_thread(self.generate_report, dataset) for dataset in datasets)
            )
        )

    def generate_report(self, data: Mapping[str, object]) -> ConsistencyReport:
        """Run every applicable check over ``data`` without modifying it."""
        raw_vectors = data.get("vectors")
        vectors: list[Vector] = (
            [v for v in raw_vectors if isinstance(v, Mapping)]
            if isinstance(raw_vectors, (list, tuple))
            else []
        )
        issues: list[ReportIssue] = []
        checks: dict[str, bool] = {}

        def run(name: str, result: ValidationResult, severity: Severity) -> None:
            checks[name] = result.valid
            issues.extend(ReportIssue(name, message, severity) for message in result.errors)

        run("vector_ids", self._id_check(vectors), "error")
        run("duplicate_ids", self.validate_unique_ids(vectors), "warning")
        run("count_mismatch", self._count_check(data, vectors), "warning")
        run("nan_values", self._nan_check(vectors), "critical")
        run("dimensions", self.validate_dimensions(vectors), "error")

        folders = data.get("folders")
        if isinstance(folders, (list, tuple)):
            run(
                "references",
                self.validate_references(vectors, [f for f in folders if isinstance(f, Mapping)]),
                "error",
            )
        index = data.get("index")
        if isinstance(index, Mapping):
            run("index_integrity", self.check_index_integrity(index, vectors), "error")

        return self._finish("report", issues, [], checks)

    def _id_check(self, vectors: list[Vector]) -> ValidationResult:
        errors = [
            f"Vector at position {position} must have a valid string ID"
            for position, vector_id in enumerate(map(_vector_id, vectors))
            if not isinstance(vector_id, str) or not vector_id
        ]
        return ValidationResult.from_errors(errors)

    def _count_check(self, data: Mapping[str, object], vectors: list[Vector]) -> ValidationResult:
        raw_count = data.get("vector_count")
        expected = raw_count if isinstance(raw_count, int) else len(vectors)
        errors: list[str] = []
        if isinstance(data.get("vectors"), (list, tuple)) and expected != len(vectors):
            errors.append(f"Vector count mismatch: expected {expected}, found {len(vectors)}")
        metadata = data.get("metadata")
        recorded = metadata.get("count") if isinstance(metadata, Mapping) else None
        if isinstance(recorded, int) and recorded != expected:
            errors.append(f"Vector count mismatch: metadata says {recorded}, actual {expected}")
        return ValidationResult.from_errors(errors)

    def _nan_check(self, vectors: list[Vector]) -> ValidationResult:
        errors = [
            f"Vector {_vector_id(v)} contains NaN values"
            for v in vectors
            if _is_array(_vector_values(v)) and _finite_values(_vector_values(v)) is False
        ]
        return ValidationResult.from_errors(errors)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _finish(
        self,
        name: str,
        issues: list[ReportIssue],
        repairs: list[str],
        checks: dict[str, bool],
    ) -> ConsistencyReport:
        report = ConsistencyReport(
            valid=not issues,
            errors=issues,
            repairs=repairs,
            checks=checks,
            timestamp=self._clock.time(),
        )
        self._record(name, report.valid, len(issues))
        if not report.valid:
            _logger.warning(f"Consistency check '{name}' found {len(issues)} issues")
        return report

    def _record(self, name: str, valid: bool, issue_count: int) -> None:
        self._history.append(
            CheckRecord(
                name=name, valid=valid, issue_count=issue_count, timestamp=self._clock.time()
            )
        )

    def get_check_history(self) -> list[CheckRecord]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
        self._last_vector_count = None

    def get_stats(self) -> CheckStats:
        total = len(self._history)
        failed = sum(1 for record in self._history if not record.valid)
        return CheckStats(
            total_checks=total,
            failed_checks=failed,
            success_rate=(total - failed) / total if total else 1.0,
        )


__all__ = [
    "ConsistencyChecker",
    "ConsistencyReport",
    "ValidationResult",
    "ReportIssue",
    "RepairEvent",
    "CheckRecord",
    "CheckStats",
    "Severity",
]
