"""Tests for vector validation, atomic execution and state consistency."""

from __future__ import annotations

import asyncio
import math

import numpy as np
import pytest

from sdk_resilience import ConsistencyChecker, ConsistencyConfig, RepairEvent
from sdk_resilience.testing import FakeClock
from tests.helpers import make_vector


# =========================================================================== #
#                   STRUCTURAL VALIDATION                                     #
# =========================================================================== #


def test_valid_vector(checker: ConsistencyChecker) -> None:
    result = checker.validate_vector(make_vector("v1", [0.1, 0.2, 0.3]))

    assert result.valid
    assert result.errors == []


@pytest.mark.parametrize("vector_id", [None, 123, ""])
def test_vector_requires_string_id(checker: ConsistencyChecker, vector_id: object) -> None:
    result = checker.validate_vector(make_vector(vector_id))

    assert not result.valid
    assert "Vector must have a valid string ID" in result.errors


def test_vector_values_must_be_array(checker: ConsistencyChecker) -> None:
    result = checker.validate_vector(make_vector("v1", "not an array"))

    assert result.errors == ["Vector values must be an array"]


@pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
def test_vector_rejects_non_finite_values(checker: ConsistencyChecker, bad: float) -> None:
    result = checker.validate_vector(make_vector("v1", [0.1, bad, 0.3]))

    assert not result.valid
    assert any("NaN" in error for error in result.errors)


def test_vector_rejects_non_numeric_values(checker: ConsistencyChecker) -> None:
    result = checker.validate_vector(make_vector("v1", ["0.1", 0.2]))

    assert result.errors == ["Vector values must be numeric"]


def test_vector_accepts_numpy_array(checker: ConsistencyChecker) -> None:
    assert checker.validate_vector(make_vector("v1", np.array([1.0, 2.0]))).valid
    assert not checker.validate_vector(make_vector("v1", np.array([1.0, np.nan]))).valid


def test_independent_failure_modes_all_reported(checker: ConsistencyChecker) -> None:
    result = checker.validate_vector({"id": 7, "values": [math.nan]})

    assert result.errors == ["Vector must have a valid string ID", "Vector contains NaN values"]


def test_dimensions(checker: ConsistencyChecker) -> None:
    same = [make_vector("a", [1.0, 2.0]), make_vector("b", [3.0, 4.0])]
    mixed = [make_vector("a", [1.0, 2.0]), make_vector("b", [3.0])]

    assert checker.validate_dimensions(same).valid
    result = checker.validate_dimensions(mixed)
    assert not result.valid
    assert "Inconsistent vector dimensions" in result.errors[0]


def test_unique_ids_names_each_duplicate(checker: ConsistencyChecker) -> None:
    vectors = [make_vector(vector_id) for vector_id in ("a", "b", "a", "b", "a")]

    result = checker.validate_unique_ids(vectors)

    assert result.errors == ["Duplicate vector ID: a", "Duplicate vector ID: b"]


# =========================================================================== #
#                   CHECKSUMS                                                 #
# =========================================================================== #


def test_checksum_is_stable_and_key_order_independent(checker: ConsistencyChecker) -> None:
    first = checker.compute_checksum({"a": 1, "b": [1, 2]})
    second = checker.compute_checksum({"b": [1, 2], "a": 1})

    assert first == second
    assert len(first) == 64
    assert checker.verify_checksum({"a": 1, "b": [1, 2]}, first)
    assert not checker.verify_checksum({"a": 2, "b": [1, 2]}, first)


# =========================================================================== #
#                   ATOMIC EXECUTION                                          #
# =========================================================================== #


@pytest.mark.asyncio
async def test_execute_atomic_commits_all_steps(checker: ConsistencyChecker) -> None:
    async def step(value: int) -> int:
        return value

    results = await checker.execute_atomic([lambda: step(1), lambda: step(2)])

    assert results == [1, 2]
    assert checker.get_completed_operations() == ["op_0", "op_1"]


@pytest.mark.asyncio
async def test_execute_atomic_failure_records_nothing(checker: ConsistencyChecker) -> None:
    side_effects: list[str] = []

    async def a() -> str:
        side_effects.append("a")
        return "a"

    async def b() -> str:
        side_effects.append("b")
        return "b"

    async def fail() -> str:
        raise RuntimeError("step 3 failed")

    with pytest.raises(RuntimeError, match="step 3 failed"):
        await checker.execute_atomic([a, b, fail])

    assert checker.get_completed_operations() == []
    # Side effects of earlier steps are not undone
    assert side_effects == ["a", "b"]


@pytest.mark.asyncio
async def test_nested_execute_atomic_embeds_inner_results(checker: ConsistencyChecker) -> None:
    async def value(v: str) -> str:
        return v

    async def nested() -> list[object]:
        return await checker.execute_atomic([lambda: value("x"), lambda: value("y")])

    results = await checker.execute_atomic([lambda: value("a"), nested])

    assert results == ["a", ["x", "y"]]
    assert len(checker.get_completed_operations()) == 4


@pytest.mark.asyncio
async def test_outer_failure_discards_inner_completions(checker: ConsistencyChecker) -> None:
    async def ok() -> str:
        return "ok"

    async def nested() -> list[object]:
        return await checker.execute_atomic([ok, ok])

    async def fail() -> str:
        raise RuntimeError("outer step failed")

    with pytest.raises(RuntimeError):
        await checker.execute_atomic([nested, fail])

    assert checker.get_completed_operations() == []


@pytest.mark.asyncio
async def test_atomic_frames_are_per_checker(clock: FakeClock) -> None:
    outer_checker = ConsistencyChecker(clock=clock)
    inner_checker = ConsistencyChecker(clock=clock)

    async def ok() -> str:
        return "ok"

    async def nested() -> list[object]:
        return await inner_checker.execute_atomic([ok])

    async def fail() -> str:
        raise RuntimeError("outer failed")

    with pytest.raises(RuntimeError):
        await outer_checker.execute_atomic([nested, fail])

    assert inner_checker.get_completed_operations() == ["op_0"]
    assert outer_checker.get_completed_operations() == []


# =========================================================================== #
#                   STATE CONSISTENCY                                         #
# =========================================================================== #


def test_invalid_state_structure(checker: ConsistencyChecker) -> None:
    report = checker.check_state_consistency({"unrelated": True})

    assert not report.valid
    assert report.errors[0].message == "Invalid state structure"
    assert report.checks == {"structure": False}


def test_count_mismatch_reported_without_repair(checker: ConsistencyChecker) -> None:
    state: dict[str, object] = {"vector_count": 5, "metadata": {"count": 3}}

    report = checker.check_state_consistency(state)

    assert not report.valid
    assert "Vector count mismatch" in report.errors[0].message
    assert report.repairs == []
    assert state["metadata"] == {"count": 3}


def test_auto_repair_fixes_count_and_notifies_once(clock: FakeClock) -> None:
    checker = ConsistencyChecker(ConsistencyConfig(auto_repair=True), clock=clock)
    events: list[RepairEvent] = []
    checker.add_repair_observer(events.append)
    state: dict[str, object] = {"vector_count": 5, "metadata": {"count": 3}}

    report = checker.check_state_consistency(state)

    assert report.valid
    assert report.repairs == ["Updated metadata count to 5"]
    assert state["metadata"] == {"count": 5}
    assert len(events) == 1
    assert events[0].type == "count_mismatch"
    assert events[0].action == "Updated metadata count"


def test_strict_mode_disables_repair(clock: FakeClock) -> None:
    checker = ConsistencyChecker(
        ConsistencyConfig(auto_repair=True, strict_mode=True), clock=clock
    )
    events: list[RepairEvent] = []
    checker.add_repair_observer(events.append)
    state: dict[str, object] = {"vector_count": 5, "metadata": {"count": 3}}

    report = checker.check_state_consistency(state)

    assert not report.valid
    assert report.repairs == []
    assert events == []
    assert state["metadata"] == {"count": 3}


def test_removed_observer_is_not_notified(clock: FakeClock) -> None:
    checker = ConsistencyChecker(ConsistencyConfig(auto_repair=True), clock=clock)
    events: list[RepairEvent] = []
    checker.add_repair_observer(events.append)
    checker.remove_repair_observer(events.append)

    checker.check_state_consistency({"vector_count": 2, "metadata": {"count": 1}})

    assert events == []


def test_count_regression_flagged(checker: ConsistencyChecker) -> None:
    assert checker.check_state_consistency({"vector_count": 10}).valid

    report = checker.check_state_consistency({"vector_count": 7})

    assert not report.valid
    assert "Vector count decreased unexpectedly" in report.errors[0].message
    assert report.checks["count_regression"] is False


def test_vector_count_defaults_to_vector_list_length(checker: ConsistencyChecker) -> None:
    state: dict[str, object] = {
        "vectors": [make_vector("a"), make_vector("b")],
        "metadata": {"count": 2},
    }

    assert checker.check_state_consistency(state).valid


def test_validate_references(checker: ConsistencyChecker) -> None:
    vectors = [
        make_vector("a", folder_id="f1"),
        make_vector("b", folder_id="missing"),
        make_vector("c"),
    ]
    folders = [{"id": "f1"}]

    result = checker.validate_references(vectors, folders)

    assert result.errors == ["Invalid folder reference: missing"]


def test_check_index_integrity(checker: ConsistencyChecker) -> None:
    vectors = [make_vector("a"), make_vector("b")]

    assert checker.check_index_integrity({"a": 0, "b": 1}, vectors).valid
    result = checker.check_index_integrity({"a": 0, "ghost": 2}, vectors)
    assert result.errors == ["Index contains non-existent ID: ghost"]


# =========================================================================== #
#                   BATCHES, REPORTS AND HISTORY                              #
# =========================================================================== #


def test_validate_batch_is_index_aligned(checker: ConsistencyChecker) -> None:
    datasets: list[dict[str, object]] = [
        {"id": "db1", "vectors": [make_vector("1", [0.1, 0.2])]},
        {"id": "db2", "vectors": [make_vector("2", [0.3, 0.4])]},
        {"id": "db3", "vectors": [make_vector("3", [0.5, math.nan])]},
    ]

    reports = checker.validate_batch(datasets)

    assert [r.valid for r in reports] == [True, True, False]
    assert reports[2].checks["nan_values"] is False
    assert [record.name for record in checker.get_check_history()] == ["report"] * 3


@pytest.mark.asyncio
async def test_validate_batch_parallel_matches_sequential(checker: ConsistencyChecker) -> None:
    datasets: list[dict[str, object]] = [
        {
            "id": f"db{i}",
            "vectors": [make_vector(str(i), [0.1, math.nan if i % 3 == 0 else 0.2])],
        }
        for i in range(10)
    ]

    parallel = await checker.validate_batch_parallel(datasets)

    assert parallel == checker.validate_batch(datasets)
    assert [r.valid for r in parallel] == [i % 3 != 0 for i in range(10)]


@pytest.mark.asyncio
async def test_validate_batch_parallel_empty(checker: ConsistencyChecker) -> None:
    assert await asyncio.wait_for(checker.validate_batch_parallel([]), timeout=1.0) == []


def test_generate_report_severities(checker: ConsistencyChecker) -> None:
    data: dict[str, object] = {
        "vectors": [make_vector("a"), make_vector("a", [0.1, math.nan, 0.3])],
        "vector_count": 3,
    }

    report = checker.generate_report(data)

    assert not report.valid
    assert report.checks["duplicate_ids"] is False
    assert report.checks["count_mismatch"] is False
    assert report.checks["nan_values"] is False
    assert report.checks["dimensions"] is True
    severities = {issue.check: issue.severity for issue in report.errors}
    assert severities == {
        "duplicate_ids": "warning",
        "count_mismatch": "warning",
        "nan_values": "critical",
    }


def test_generate_report_includes_optional_checks(checker: ConsistencyChecker) -> None:
    data: dict[str, object] = {
        "vectors": [make_vector("a", folder_id="f1")],
        "folders": [{"id": "f2"}],
        "index": {"a": 0, "b": 1},
    }

    report = checker.generate_report(data)

    assert report.checks["references"] is False
    assert report.checks["index_integrity"] is False


def test_generate_report_clean(checker: ConsistencyChecker, clock: FakeClock) -> None:
    report = checker.generate_report({"vectors": [make_vector("a"), make_vector("b")]})

    assert report.valid
    assert report.errors == []
    assert report.timestamp == clock.time()


def test_generate_report_counts_without_vectors(checker: ConsistencyChecker) -> None:
    assert checker.generate_report({"vector_count": 2, "metadata": {"count": 2}}).valid

    report = checker.generate_report({"vector_count": 2, "metadata": {"count": 3}})
    assert [issue.message for issue in report.errors] == [
        "Vector count mismatch: metadata says 3, actual 2"
    ]


def test_unhashable_ids_are_reported_not_raised(checker: ConsistencyChecker) -> None:
    vectors = [make_vector(["a"]), make_vector({"id": "b"}), make_vector("c")]

    assert checker.validate_unique_ids(vectors).valid
    assert checker.check_index_integrity({"c": 0}, vectors).valid

    report = checker.generate_report({"vectors": vectors})
    assert not report.valid
    assert report.checks["vector_ids"] is False
    assert {issue.severity for issue in report.errors} == {"error"}
    assert len(report.errors) == 2


def test_values_beyond_float_range_are_not_finite(checker: ConsistencyChecker) -> None:
    result = checker.validate_vector(make_vector("big", [0.1, 10**400]))

    assert result.errors == ["Vector contains NaN values"]


def test_history_and_stats(checker: ConsistencyChecker) -> None:
    checker.generate_report({"vectors": [make_vector("a")]})
    checker.generate_report({"vectors": [make_vector("a"), make_vector("a")]})
    checker.check_state_consistency({"vector_count": 1})

    history = checker.get_check_history()
    stats = checker.get_stats()

    assert [record.name for record in history] == ["report", "report", "state_consistency"]
    assert stats.total_checks == 3
    assert stats.failed_checks == 1
    assert stats.success_rate == pytest.approx(2 / 3)

    checker.clear_history()
    assert checker.get_check_history() == []
    assert checker.get_stats().success_rate == 1.0
