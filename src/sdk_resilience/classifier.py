"""
Boundary translation of arbitrary exceptions into an ErrorClassification.

Errors raised by this package carry their kind and are never re-derived.
Foreign errors are mapped, in order, by S3/botocore error code, by builtin
exception type, by exception class name and finally by message text.
Anything unmatched is a non-recoverable system error.
"""

from __future__ import annotations

import pydantic
from botocore.exceptions import ClientError

from sdk_resilience.errors import ErrorClassification, ErrorKind, ResilienceError


_CLIENT_ERROR_CODES: dict[str, ErrorKind] = {
    "SlowDown": "network",
    "ServiceUnavailable": "network",
    "RequestTimeout": "network",
    "InternalError": "network",
    "RequestLimitExceeded": "network",
    "PreconditionFailed": "concurrency",
    "412": "concurrency",
    "ConditionalRequestConflict": "concurrency",
    "QuotaExceeded": "storage",
    "EntityTooLarge": "storage",
    "NoSuchKey": "storage",
    "NoSuchBucket": "storage",
    "InvalidArgument": "validation",
    "InvalidRequest": "validation",
}

# First match wins; ordered so "invalid ... conflict" is still validation.
_NAME_PATTERNS: tuple[tuple[str, ErrorKind], ...] = (
    ("validation", "validation"),
    ("conflict", "concurrency"),
    ("concurrency", "concurrency"),
    ("quota", "storage"),
    ("storage", "storage"),
    ("network", "network"),
    ("timeout", "network"),
    ("connection", "network"),
)

_MESSAGE_PATTERNS: tuple[tuple[str, ErrorKind], ...] = (
    ("invalid", "validation"),
    ("revision number too low", "concurrency"),
    ("directorytransactionexception", "concurrency"),
    ("transaction conflict", "concurrency"),
    ("conflict", "concurrency"),
    ("quota", "storage"),
    ("storage full", "storage"),
    ("disk full", "storage"),
    ("network", "network"),
    ("timed out", "network"),
    ("timeout", "network"),
    ("connection", "network"),
)


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Classify an exception for the retry loop.

    Args:
        error: Any exception raised by a wrapped operation

    Returns:
        The classification; unknown errors are ``system`` and neither
        recoverable nor retryable

    Example:
        >>> classify_error(TimeoutError()).retryable
        True
        >>> classify_error(RuntimeError("Unknown error")).kind
        'system'
    """
    return ErrorClassification.for_kind(_classify_kind(error))


def _classify_kind(error: BaseException) -> ErrorKind:
    if isinstance(error, ResilienceError):
        return error.kind

    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        mapped = _CLIENT_ERROR_CODES.get(code)
        if mapped is not None:
            return mapped

    if isinstance(error, (TimeoutError, ConnectionError)):
        return "network"
    if isinstance(error, pydantic.ValidationError):
        return "validation"

    name = type(error).__name__.lower()
    for pattern, kind in _NAME_PATTERNS:
        if pattern in name:
            return kind

    message = str(error).lower()
    for pattern, kind in _MESSAGE_PATTERNS:
        if pattern in message:
            return kind

    return "system"


__all__ = ["classify_error"]
