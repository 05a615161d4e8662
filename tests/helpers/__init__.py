# tests/helpers/__init__.py
"""Shared test utilities: Result unwrapping and test doubles.

Usage:
    >>> from tests.helpers import expect_success, ScriptedOperation, make_vector
    >>> op = ScriptedOperation(errors=[TimeoutError()], result=42)
"""

from __future__ import annotations

from tests.helpers.fakes import (
    FailingOperation,
    FakeS3Client,
    FlakyStore,
    ScriptedOperation,
    client_error,
    make_vector,
)
from tests.helpers.result_utils import expect_failure, expect_success


__all__ = [
    "expect_success",
    "expect_failure",
    "ScriptedOperation",
    "FailingOperation",
    "FlakyStore",
    "FakeS3Client",
    "client_error",
    "make_vector",
]
