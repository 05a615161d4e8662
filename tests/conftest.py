# tests/conftest.py
"""Global PyTest fixtures for the test-suite.

Every test runs under a SIGALRM-based timeout so a deadlocked serializer or
a retry loop that never terminates fails loudly instead of hanging the run.
Time-dependent components are driven by a FakeClock.
"""

from __future__ import annotations

import signal
from types import FrameType
from typing import Callable, Generator

import pytest

from sdk_resilience import (
    ConsistencyChecker,
    ErrorHandler,
    ErrorHandlerConfig,
    RecoveryConfig,
    RecoveryManager,
)
from sdk_resilience.storage import InMemoryVersionedStore, MemoryBackend
from sdk_resilience.testing import FakeClock


DEFAULT_TEST_TIMEOUT_SECONDS = 30.0


def _build_timeout_handler(
    timeout_seconds: float,
) -> Callable[[int, FrameType | None], None]:
    """Create SIGALRM handler that fails the test when timeout is reached."""

    def _handle_timeout(signum: int, frame: FrameType | None) -> None:
        pytest.fail(
            f"Test exceeded {timeout_seconds:.0f}s timeout (includes setup/teardown)",
            pytrace=True,
        )

    return _handle_timeout


def _resolve_timeout_seconds(request: pytest.FixtureRequest) -> float:
    """Return timeout for current test (marker override allowed)."""
    marker = request.node.get_closest_marker("timeout")
    if marker is None:
        return DEFAULT_TEST_TIMEOUT_SECONDS

    raw_value = marker.kwargs.get("seconds", marker.args[0] if marker.args else None)
    if raw_value is None:
        pytest.fail("timeout marker requires seconds argument", pytrace=True)

    seconds = float(raw_value)
    if seconds <= 0:
        pytest.fail("timeout marker must be positive seconds", pytrace=True)

    return seconds


@pytest.fixture(autouse=True)
def per_test_timeout(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """Fail any test that runs longer than the default timeout."""
    if not hasattr(signal, "SIGALRM") or not hasattr(signal, "setitimer"):
        yield
        return

    timeout_seconds = _resolve_timeout_seconds(request)
    handler = _build_timeout_handler(timeout_seconds)
    previous_handler = signal.getsignal(signal.SIGALRM)
    signal.signal(signal.SIGALRM, handler)
    signal.setitimer(signal.ITIMER_REAL, timeout_seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0.0)
        signal.signal(signal.SIGALRM, previous_handler)


# =========================================================================== #
#                   COMPONENT FIXTURES                                        #
# =========================================================================== #


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def handler(clock: FakeClock) -> ErrorHandler:
    """ErrorHandler with 3 retries at 100ms base delay on a fake clock."""
    return ErrorHandler(ErrorHandlerConfig(max_retries=3, retry_delay=0.1), clock=clock)


@pytest.fixture
def recovery(clock: FakeClock) -> RecoveryManager:
    return RecoveryManager(RecoveryConfig(max_checkpoints=3), clock=clock)


@pytest.fixture
def checker(clock: FakeClock) -> ConsistencyChecker:
    return ConsistencyChecker(clock=clock)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def memory_store(backend: MemoryBackend) -> InMemoryVersionedStore:
    return InMemoryVersionedStore(backend)
