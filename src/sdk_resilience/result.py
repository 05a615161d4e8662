"""
Result type for explicit error handling.

Pure code paths in this package (configuration building, snapshot decoding,
CLI commands) return a Result instead of raising, so that every caller has to
handle both outcomes explicitly.

Usage:
    >>> def parse_retries(raw: str) -> Result[int, str]:
    ...     if not raw.isdigit():
    ...         return Failure(f"not a number: {raw!r}")
    ...     return Success(int(raw))
    ...
    >>> match parse_retries("3"):
    ...     case Success(value):
    ...         print(f"retries={value}")
    ...     case Failure(error):
    ...         print(f"error={error}")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, NoReturn, TypeVar


T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Represents a successful result containing a value of type T."""

    value: T

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Unwrap the success value. Safe to call on Success."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        """Map the success value through function f."""
        return Success(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind: chain operations that return Result."""
        return f(self.value)


@dataclass(frozen=True)
class Failure(Generic[E]):
    """Represents a failed result containing an error of type E."""

    error: E

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        """
        Unwrap the success value.

        Raises:
            RuntimeError: Always, since Failure has no value.
        """
        raise RuntimeError(f"Called unwrap() on Failure: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        """No-op on Failure."""
        result: Result[U, E] = Failure(self.error)
        return result

    def flat_map(self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """No-op on Failure."""
        result: Result[U, E] = Failure(self.error)
        return result


Result = Success[T] | Failure[E]


def partition_results(
    results: list[Result[T, E]],
) -> tuple[list[T], list[E]]:
    """
    Partition a list of Results into successes and failures.

    Args:
        results: List of Result values to partition

    Returns:
        Tuple of (successes, failures)
    """
    successes: list[T] = [result.value for result in results if isinstance(result, Success)]
    failures: list[E] = [result.error for result in results if isinstance(result, Failure)]
    return (successes, failures)


__all__ = ["Success", "Failure", "Result", "partition_results"]
