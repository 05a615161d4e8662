"""
Circuit breaker guarding a repeatedly failing dependency.

States:
- CLOSED: calls flow through; consecutive failures are counted
- OPEN: calls are rejected with CircuitOpenError until the cooldown elapses
- HALF_OPEN: exactly one trial call is let through; its outcome decides
  between CLOSED and OPEN

The breaker is driven by its owner (ErrorHandler): ``before_call`` gates a
call, and ``record_success`` / ``record_failure`` report its outcome.
"""

from __future__ import annotations

import logging
from enum import Enum

from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.errors import CircuitOpenError


_logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker with a single half-open trial.

    Example:
        breaker = CircuitBreaker("marketplace", threshold=3, reset_timeout=30.0)
        breaker.before_call()          # raises CircuitOpenError while open
        try:
            result = await call()
        except Exception:
            breaker.record_failure()
            raise
        breaker.record_success()
    """

    def __init__(
        self,
        name: str,
        threshold: int,
        reset_timeout: float,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.name = name
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state is not new_state:
            _logger.warning(
                f"Circuit breaker '{self.name}' transitioned: "
                f"{old_state.value} -> {new_state.value}"
            )

    def before_call(self) -> None:
        """
        Gate a call.

        Raises:
            CircuitOpenError: While open and cooling down, or while a
                half-open trial call is already in flight.
        """
        if self._state is CircuitState.OPEN:
            elapsed = self._clock.monotonic() - self._opened_at
            if elapsed < self.reset_timeout:
                raise CircuitOpenError(
                    self.name, self._failure_count, self.reset_timeout - elapsed
                )
            self._transition_to(CircuitState.HALF_OPEN)

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, self._failure_count, 0.0)
            self._trial_in_flight = True

    def record_success(self) -> None:
        self._failure_count = 0
        self._trial_in_flight = False
        if self._state is CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED)
            _logger.info(f"Circuit breaker '{self.name}' recovered")

    def record_failure(self) -> None:
        self._failure_count += 1
        self._trial_in_flight = False

        if self._state is CircuitState.HALF_OPEN:
            self._open()
            _logger.warning(f"Circuit breaker '{self.name}' reopened after failed trial")
        elif self._state is CircuitState.CLOSED and self._failure_count >= self.threshold:
            self._open()

    def release_trial(self) -> None:
        """Give up a half-open trial slot without an outcome (e.g. cancellation)."""
        self._trial_in_flight = False

    def trip(self) -> None:
        """Force the circuit open, starting a fresh cooldown."""
        self._open()

    def reset(self) -> None:
        """Force the circuit closed and forget counted failures."""
        self._failure_count = 0
        self._trial_in_flight = False
        self._transition_to(CircuitState.CLOSED)

    def _open(self) -> None:
        self._opened_at = self._clock.monotonic()
        self._transition_to(CircuitState.OPEN)


__all__ = ["CircuitState", "CircuitBreaker"]
