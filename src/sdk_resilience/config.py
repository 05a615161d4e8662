"""
Validated configuration for the resilience components.

Every component takes its configuration explicitly at construction; nothing
is read from the environment here. All durations are in seconds.

Builders return a Result so callers assembling configuration from untrusted
input (CLI flags, JSON files) can handle validation failures without
try/except:

    >>> match build_error_handler_config(max_retries=3, retry_delay=0.1):
    ...     case Success(cfg):
    ...         handler = ErrorHandler(cfg)
    ...     case Failure(err):
    ...         print(err)
"""

from __future__ import annotations

from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, JsonValue, ValidationError

from sdk_resilience.errors import ErrorRecord
from sdk_resilience.result import Result
from sdk_resilience.validation import validate_model


class ErrorHandlerConfig(BaseModel):
    """Retry and circuit-breaker policy for ErrorHandler."""

    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0.0)
    exponential_backoff: bool = True
    max_retry_delay: float = Field(default=30.0, gt=0.0)
    circuit_breaker_threshold: int | None = Field(default=None, gt=0)
    circuit_breaker_timeout: float = Field(default=60.0, ge=0.0)
    on_error: Callable[[ErrorRecord], None] | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class RecoveryConfig(BaseModel):
    """Checkpoint retention and recovery policy for RecoveryManager."""

    checkpoint_interval: float | None = Field(default=None, gt=0.0)
    max_checkpoints: int = Field(default=10, gt=0)
    checkpoint_retention: float | None = Field(default=None, gt=0.0)
    auto_recover: bool = False
    skip_corrupted: bool = False
    state_validator: Callable[[JsonValue], bool] | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class ConsistencyConfig(BaseModel):
    """Strictness and repair policy for ConsistencyChecker."""

    strict_mode: bool = False
    auto_repair: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def repairs_enabled(self) -> bool:
        """strict_mode always wins over auto_repair."""
        return self.auto_repair and not self.strict_mode


def build_error_handler_config(**data: object) -> Result[ErrorHandlerConfig, ValidationError]:
    return validate_model(ErrorHandlerConfig, **data)


def build_recovery_config(**data: object) -> Result[RecoveryConfig, ValidationError]:
    return validate_model(RecoveryConfig, **data)


def build_consistency_config(**data: object) -> Result[ConsistencyConfig, ValidationError]:
    return validate_model(ConsistencyConfig, **data)


__all__ = [
    "ErrorHandlerConfig",
    "RecoveryConfig",
    "ConsistencyConfig",
    "build_error_handler_config",
    "build_recovery_config",
    "build_consistency_config",
]
