# tests/test_e2e/test_resilience_workflow.py
"""
End-to-end workflows across serializer, handler, recovery and consistency.

Scenarios run against the in-memory versioned store on a fake clock:
a crashed session resumed from persisted state, an outage tripping the
circuit breaker, and a vector collection kept consistent across updates.
"""

from __future__ import annotations

from typing import Callable

import pytest
from pydantic import JsonValue

from sdk_resilience import (
    CircuitOpenError,
    CircuitState,
    ConsistencyChecker,
    ConsistencyConfig,
    ErrorHandler,
    ErrorHandlerConfig,
    InvalidDataError,
    NetworkError,
    RecoveryConfig,
    RecoveryManager,
    RepairEvent,
    ResilientStore,
)
from sdk_resilience.storage import InMemoryVersionedStore, MemoryBackend, StorePersistence
from sdk_resilience.testing import FakeClock
from tests.helpers import FlakyStore, make_vector


JOB_KEY = "job:7"
JOB_PATH = "jobs/7.json"


def _session(
    backend: MemoryBackend, clock: FakeClock, *, store: FlakyStore | None = None
) -> ResilientStore:
    persistence = StorePersistence(InMemoryVersionedStore(backend), clock=clock)
    return ResilientStore(
        store if store is not None else InMemoryVersionedStore(backend),
        handler=ErrorHandler(
            ErrorHandlerConfig(
                max_retries=2,
                retry_delay=0.1,
                circuit_breaker_threshold=2,
                circuit_breaker_timeout=30.0,
            ),
            name="marketplace",
            clock=clock,
        ),
        recovery=RecoveryManager(
            RecoveryConfig(auto_recover=True, max_checkpoints=5),
            persistence=persistence,
            clock=clock,
        ),
        clock=clock,
    )


def advance_stage(stage: str) -> Callable[[JsonValue], JsonValue]:
    def mutate(doc: JsonValue) -> JsonValue:
        history = doc.get("history", []) if isinstance(doc, dict) else []
        assert isinstance(history, list)
        return {"stage": stage, "history": [*history, stage]}

    return mutate


@pytest.mark.asyncio
async def test_crashed_session_is_resumed(backend: MemoryBackend, clock: FakeClock) -> None:
    first = _session(backend, clock)
    await first.recovery.open()
    await first.update(JOB_KEY, JOB_PATH, advance_stage("uploaded"))

    # Simulate a crash mid-operation: started, never completed
    await first.recovery.start_operation("submit:7", "submit_job")

    second = _session(backend, clock)
    async with second.recovery as recovery:
        [pending] = recovery.get_incomplete_operations()
        assert pending.operation_id == "submit:7"
        assert recovery.recover_state(JOB_KEY) == {"stage": "uploaded", "history": ["uploaded"]}

        document = await recovery.retry_incomplete_operation(
            pending.operation_id,
            lambda: second.update(JOB_KEY, JOB_PATH, advance_stage("submitted")),
        )

        assert document == {"stage": "submitted", "history": ["uploaded", "submitted"]}
        assert recovery.get_incomplete_operations() == []

    third = _session(backend, clock)
    async with third.recovery as recovery:
        assert recovery.get_incomplete_operations() == []
        assert [cp.data for cp in recovery.get_checkpoint_history(JOB_KEY)] == [
            {"stage": "uploaded", "history": ["uploaded"]},
            {"stage": "submitted", "history": ["uploaded", "submitted"]},
        ]


@pytest.mark.asyncio
async def test_outage_trips_breaker_then_recovers(
    backend: MemoryBackend, clock: FakeClock
) -> None:
    flaky = FlakyStore(InMemoryVersionedStore(backend))
    session = _session(backend, clock, store=flaky)
    await session.save(JOB_KEY, JOB_PATH, {"stage": "uploaded", "history": ["uploaded"]})

    flaky.get_errors = [NetworkError("node unreachable") for _ in range(6)]
    for _ in range(2):
        with pytest.raises(NetworkError):
            await session.load(JOB_KEY, JOB_PATH)
    assert flaky.get_calls == 6

    breaker = session.handler.circuit_breaker
    assert breaker is not None
    assert breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await session.load(JOB_KEY, JOB_PATH)
    assert flaky.get_calls == 6

    clock.advance(30.0)
    assert await session.load(JOB_KEY, JOB_PATH) == {
        "stage": "uploaded",
        "history": ["uploaded"],
    }
    assert breaker.state is CircuitState.CLOSED

    stats = session.handler.get_stats()
    assert stats.total == 2
    assert stats.by_type == {"network": 2}


@pytest.mark.asyncio
async def test_collection_stays_consistent(backend: MemoryBackend, clock: FakeClock) -> None:
    checker = ConsistencyChecker(ConsistencyConfig(auto_repair=True), clock=clock)
    repairs: list[RepairEvent] = []
    checker.add_repair_observer(repairs.append)
    store = ResilientStore(InMemoryVersionedStore(backend), checker=checker, clock=clock)
    path = "collections/embeddings.json"

    def add_vector(vector_id: str, values: list[float]) -> Callable[[JsonValue], JsonValue]:
        def mutate(doc: JsonValue) -> JsonValue:
            vectors = doc.get("vectors", []) if isinstance(doc, dict) else []
            assert isinstance(vectors, list)
            return {"vectors": [*vectors, {"id": vector_id, "values": values}]}

        return mutate

    await store.update("collection", path, add_vector("a", [0.1, 0.2]))
    await store.update("collection", path, add_vector("b", [0.3, 0.4]))

    with pytest.raises(InvalidDataError, match="Inconsistent vector dimensions"):
        await store.update("collection", path, add_vector("c", [0.5]))
    with pytest.raises(InvalidDataError, match="Duplicate vector ID: a"):
        await store.update("collection", path, add_vector("a", [0.5, 0.6]))

    document = await store.load("collection", path)
    assert isinstance(document, dict)
    assert [v["id"] for v in document["vectors"]] == ["a", "b"]

    state: dict[str, object] = {
        "vectors": [make_vector("a"), make_vector("b")],
        "metadata": {"count": 1},
    }
    report = checker.check_state_consistency(state)
    assert report.valid
    assert state["metadata"] == {"count": 2}
    assert len(repairs) == 1

    results = await checker.validate_batch_parallel(
        [{"vectors": [make_vector("a")]}, {"vectors": [make_vector("b", [float("nan")])]}]
    )
    assert [r.valid for r in results] == [True, False]


@pytest.mark.asyncio
async def test_atomic_batch_commit(clock: FakeClock) -> None:
    checker = ConsistencyChecker(clock=clock)
    calls: list[str] = []
    recovery = RecoveryManager(clock=clock)

    async def step(name: str) -> str:
        calls.append(name)
        await recovery.create_checkpoint(name, {"done": True})
        return name

    async def failing() -> str:
        raise NetworkError("lost connection")

    results = await checker.execute_atomic(
        [lambda: step("upload"), lambda: step("register"), lambda: step("submit")]
    )
    assert results == ["upload", "register", "submit"]

    with pytest.raises(NetworkError):
        await checker.execute_atomic([lambda: step("retry-upload"), failing])

    assert checker.get_completed_operations() == ["op_0", "op_1", "op_2"]
    assert calls == ["upload", "register", "submit", "retry-upload"]
    assert set(recovery.recover_all()) == {"upload", "register", "submit", "retry-upload"}
