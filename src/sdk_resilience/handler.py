"""
Retrying error handler with an optional circuit breaker.

ErrorHandler wraps zero-argument coroutine functions. Failures are
classified (see ``classifier.classify_error``); retryable ones are retried
with exponential backoff up to ``max_retries`` extra attempts, everything
else propagates at once. Terminal failures are counted by the circuit
breaker and appended to an in-memory error history.
"""

from __future__ import annotations

import logging
import traceback
from collections import Counter
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, TypeVar

from sdk_resilience.circuit import CircuitBreaker
from sdk_resilience.classifier import classify_error
from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.config import ErrorHandlerConfig
from sdk_resilience.errors import ErrorClassification, ErrorRecord


_logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class ErrorStats:
    """Terminal failures grouped by the caller-supplied ``context["type"]``."""

    total: int
    by_type: dict[str, int]


class ErrorHandler:
    """
    Classify, retry and record failures of wrapped operations.

    Usage:
        handler = ErrorHandler(ErrorHandlerConfig(max_retries=3, retry_delay=0.1))
        listing = await handler.handle(lambda: market.list_hosts())
        cached = await handler.handle_with_fallback(fetch_prices, lambda: cache.prices())
    """

    def __init__(
        self,
        config: ErrorHandlerConfig | None = None,
        *,
        name: str = "default",
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.config = config or ErrorHandlerConfig()
        self.name = name
        self._clock = clock
        self._history: list[ErrorRecord] = []
        self._stats: Counter[str] = Counter()
        threshold = self.config.circuit_breaker_threshold
        self.circuit_breaker: CircuitBreaker | None = (
            CircuitBreaker(
                name,
                threshold=threshold,
                reset_timeout=self.config.circuit_breaker_timeout,
                clock=clock,
            )
            if threshold is not None
            else None
        )

    def classify(self, error: BaseException) -> ErrorClassification:
        return classify_error(error)

    def retry_delay_for(self, retry: int) -> float:
        """Delay in seconds before the ``retry``-th retry (1-based)."""
        if not self.config.exponential_backoff:
            return min(self.config.retry_delay, self.config.max_retry_delay)
        return min(self.config.retry_delay * (2 ** (retry - 1)), self.config.max_retry_delay)

    async def handle(
        self,
        operation: Callable[[], Awaitable[R]],
        *,
        context: Mapping[str, object] | None = None,
    ) -> R:
        """
        Run ``operation``, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine function
            context: Extra fields stored with a terminal failure; its
                ``"type"`` entry groups ``get_stats``

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: Circuit is open; ``operation`` was not invoked
            Exception: The operation's last error, unchanged
        """
        breaker = self.circuit_breaker
        if breaker is not None:
            breaker.before_call()

        try:
            result = await self._run_with_retries(operation)
        except Exception as exc:
            if breaker is not None:
                breaker.record_failure()
            classification = self.classify(exc)
            self.record_error(
                exc,
                {"type": classification.kind, "classification": classification, **(context or {})},
            )
            raise
        except BaseException:
            if breaker is not None:
                breaker.release_trial()
            raise

        if breaker is not None:
            breaker.record_success()
        return result

    async def _run_with_retries(self, operation: Callable[[], Awaitable[R]]) -> R:
        retry = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                classification = self.classify(exc)
                if not classification.retryable or retry >= self.config.max_retries:
                    raise
                retry += 1
                delay = self.retry_delay_for(retry)
                _logger.warning(
                    f"[{self.name}] {classification.kind} error, retry "
                    f"{retry}/{self.config.max_retries} in {delay:.3f}s: {exc}"
                )
                await self._clock.sleep(delay)

    async def handle_with_fallback(
        self,
        operation: Callable[[], Awaitable[R]],
        fallback: Callable[[], Awaitable[R]],
        *,
        context: Mapping[str, object] | None = None,
    ) -> R:
        """Like ``handle`` but returns ``await fallback()`` instead of raising."""
        try:
            return await self.handle(operation, context=context)
        except Exception as exc:
            _logger.warning(f"[{self.name}] operation failed, using fallback: {exc}")
            return await fallback()

    def enrich_error(self, error: BaseException, context: Mapping[str, object]) -> ErrorRecord:
        """Build the history record for ``error`` without storing it."""
        stack = (
            "".join(traceback.format_exception(error)) if error.__traceback__ is not None else None
        )
        return ErrorRecord(
            message=str(error),
            name=type(error).__name__,
            context=dict(context),
            timestamp=self._clock.time(),
            stack=stack,
        )

    def record_error(
        self, error: BaseException, context: Mapping[str, object] | None = None
    ) -> ErrorRecord:
        """Append ``error`` to the history, count it and notify ``on_error``."""
        record = self.enrich_error(error, context or {})
        self._history.append(record)
        self._stats[str(record.context.get("type", "unknown"))] += 1
        _logger.error(f"[{self.name}] {record.name}: {record.message}", exc_info=error)
        if self.config.on_error is not None:
            self.config.on_error(record)
        return record

    def get_error_history(self) -> list[ErrorRecord]:
        return list(self._history)

    def get_stats(self) -> ErrorStats:
        return ErrorStats(total=sum(self._stats.values()), by_type=dict(self._stats))

    def clear_history(self) -> None:
        self._history.clear()

    def reset_stats(self) -> None:
        self._stats.clear()


__all__ = ["ErrorHandler", "ErrorStats"]
