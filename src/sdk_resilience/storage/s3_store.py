"""
S3-backed versioned store with async operations.

Implements:
- ETag-based compare-and-swap writes (IfMatch / IfNoneMatch)
- Translation of precondition failures into RevisionConflictError
- Connection pooling and exponential backoff retry on throttling
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from types import TracebackType
from typing import Callable, Coroutine, ParamSpec, TypeVar

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from sdk_resilience.clock import SYSTEM_CLOCK, Clock
from sdk_resilience.errors import RevisionConflictError
from sdk_resilience.storage.protocols import AsyncContextManagerProtocol, S3ClientProtocol


_logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

_THROTTLE_CODES = frozenset({"SlowDown", "RequestLimitExceeded", "ServiceUnavailable"})
_PRECONDITION_CODES = frozenset({"PreconditionFailed", "412", "ConditionalRequestConflict"})
_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


@dataclass(frozen=True)
class RetryScheduled:
    """Planned retry with bounded, explicit delay."""

    attempt: int
    delay_seconds: float


@dataclass(frozen=True)
class RetryGiveUp:
    """Explicit stop signal: not retryable, or budget consumed."""

    reason: str


RetryControl = RetryScheduled | RetryGiveUp


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _retry_decision(
    *, attempt: int, error_code: str, max_retries: int, base_delay: float, max_delay: float
) -> RetryControl:
    """Map an error code and attempt to an explicit retry control signal."""
    if error_code in _PRECONDITION_CODES:
        return RetryGiveUp(reason="precondition_failed")
    if error_code not in _THROTTLE_CODES:
        return RetryGiveUp(reason=f"non_retryable:{error_code}")
    if attempt >= max_retries:
        return RetryGiveUp(reason="exhausted")
    return RetryScheduled(
        attempt=attempt, delay_seconds=min(base_delay * (2**attempt), max_delay)
    )


def retry_on_throttle(
    max_retries: int = 5,
    base_delay: float = 0.1,
    max_delay: float = 5.0,
    clock: Clock = SYSTEM_CLOCK,
) -> Callable[
    [Callable[P, Coroutine[object, object, R]]],
    Callable[P, Coroutine[object, object, R]],
]:
    """
    Decorator to retry S3 calls on throttling errors.

    Uses exponential backoff: delay = min(base_delay * (2 ** attempt), max_delay).
    Precondition failures and all other errors are re-raised untouched.
    Backoff waits go through ``clock``.
    """

    def decorator(
        func: Callable[P, Coroutine[object, object, R]],
    ) -> Callable[P, Coroutine[object, object, R]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except ClientError as e:
                    match _retry_decision(
                        attempt=attempt,
                        error_code=_error_code(e),
                        max_retries=max_retries,
                        base_delay=base_delay,
                        max_delay=max_delay,
                    ):
                        case RetryGiveUp():
                            raise
                        case RetryScheduled(delay_seconds=delay):
                            _logger.warning(
                                f"S3 throttled in {func.__name__}, "
                                f"retry {attempt + 1}/{max_retries} in {delay:.2f}s"
                            )
                            await clock.sleep(delay)
                            attempt += 1

        # Manually preserve function metadata (avoiding @wraps to prevent Any)
        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        wrapper.__module__ = func.__module__
        wrapper.__qualname__ = func.__qualname__

        return wrapper

    return decorator


class S3VersionedStore:
    """
    VersionedStore on an S3 bucket with ETag compare-and-swap.

    The ETag observed by the last ``get`` (or ``put``) of a path is the
    revision this client writes against. Paths observed as missing are
    created with ``IfNoneMatch="*"``; paths never observed are written
    unconditionally.

    Usage:
        async with S3VersionedStore("sdk-state") as store:
            raw = await store.get("conversations/42.json")
            await store.put("conversations/42.json", updated)
    """

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        region_name: str = "us-east-1",
        *,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        """
        Initialize async S3 store.

        Args:
            bucket_name: S3 bucket name
            endpoint_url: S3 endpoint URL (reads from AWS_ENDPOINT_URL env if None)
            aws_access_key_id: AWS access key (reads from AWS_ACCESS_KEY_ID env if None)
            aws_secret_access_key: AWS secret key (reads from AWS_SECRET_ACCESS_KEY env if None)
            region_name: AWS region (default: "us-east-1")
            clock: Time source for throttling backoff
        """
        self.bucket_name = bucket_name
        self._clock = clock
        self.endpoint_url = endpoint_url or os.environ.get("AWS_ENDPOINT_URL")
        self.aws_access_key_id = aws_access_key_id or os.environ.get("AWS_ACCESS_KEY_ID")
        self.aws_secret_access_key = aws_secret_access_key or os.environ.get(
            "AWS_SECRET_ACCESS_KEY"
        )
        self.region_name = region_name

        self.boto_config = Config(
            max_pool_connections=50,
            connect_timeout=5,
            read_timeout=60,
            retries={"max_attempts": 3, "mode": "adaptive"},
        )

        self._s3_client: S3ClientProtocol | None = None
        self._client_context: AsyncContextManagerProtocol | None = None
        self._etags: dict[str, str | None] = {}

    @classmethod
    def from_client(
        cls, bucket_name: str, client: S3ClientProtocol, *, clock: Clock = SYSTEM_CLOCK
    ) -> S3VersionedStore:
        """Wrap an already-open S3 client (the caller owns its lifecycle)."""
        store = cls(bucket_name, clock=clock)
        store._s3_client = client
        return store

    async def __aenter__(self) -> S3VersionedStore:
        session = aioboto3.Session(
            aws_access_key_id=self.aws_access_key_id,
            aws_secret_access_key=self.aws_secret_access_key,
            region_name=self.region_name,
        )
        client_context: AsyncContextManagerProtocol = session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            config=self.boto_config,
        )
        self._client_context = client_context
        self._s3_client = await client_context.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        client_ctx = self._client_context
        if client_ctx is not None:
            await client_ctx.__aexit__(exc_type, exc_val, exc_tb)
            self._s3_client = None
            self._client_context = None
        return None

    @property
    def client(self) -> S3ClientProtocol:
        if self._s3_client is None:
            raise RuntimeError("S3 client not initialized. Use 'async with' context manager.")
        return self._s3_client

    # -------------------------------------------------------------------------
    # VersionedStore
    # -------------------------------------------------------------------------

    async def get(self, path: str) -> bytes | None:
        try:
            data, etag = await self._throttled(self._get_object)(path)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                self._etags[path] = None
                return None
            raise
        self._etags[path] = etag
        return data

    async def put(self, path: str, data: bytes) -> str:
        conditions: dict[str, object] = {}
        if path in self._etags:
            expected = self._etags[path]
            conditions = {"IfNoneMatch": "*"} if expected is None else {"IfMatch": expected}

        try:
            etag = await self._throttled(self._put_object)(path, data, conditions)
        except ClientError as e:
            if _error_code(e) not in _PRECONDITION_CODES:
                raise
            await self._throttled(self._refresh_etag)(path)
            _logger.warning(f"ETag precondition failed for s3://{self.bucket_name}/{path}")
            raise RevisionConflictError(path, f"Revision conflict ({_error_code(e)})") from e

        self._etags[path] = etag
        return etag

    # -------------------------------------------------------------------------
    # Raw S3 calls
    # -------------------------------------------------------------------------

    def _throttled(
        self, func: Callable[P, Coroutine[object, object, R]]
    ) -> Callable[P, Coroutine[object, object, R]]:
        return retry_on_throttle(max_retries=5, clock=self._clock)(func)

    async def _get_object(self, path: str) -> tuple[bytes, str]:
        response = await self.client.get_object(Bucket=self.bucket_name, Key=path)
        body = response["Body"]
        if not hasattr(body, "read"):
            raise TypeError(f"Expected streaming body with read() method, got {type(body)}")
        data = await body.read()
        if not isinstance(data, bytes):
            raise TypeError(f"Expected bytes, got {type(data)}")
        return data, str(response["ETag"])

    async def _put_object(self, path: str, data: bytes, conditions: dict[str, object]) -> str:
        response = await self.client.put_object(
            Bucket=self.bucket_name,
            Key=path,
            Body=data,
            ContentType="application/json",
            **conditions,
        )
        return str(response["ETag"])

    async def _refresh_etag(self, path: str) -> None:
        try:
            response = await self.client.head_object(Bucket=self.bucket_name, Key=path)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                self._etags[path] = None
                return
            raise
        self._etags[path] = str(response["ETag"])


__all__ = ["S3VersionedStore", "retry_on_throttle"]
