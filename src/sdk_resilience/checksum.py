"""Canonical JSON encoding and SHA-256 checksums of JSON-compatible data."""

from __future__ import annotations

import hashlib
import json

from pydantic import JsonValue


def canonical_json(data: JsonValue, *, allow_nan: bool = True) -> str:
    """Key-sorted, whitespace-free JSON; equal data always encodes equally."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), allow_nan=allow_nan)


def sha256_checksum(data: JsonValue) -> str:
    """Hex SHA-256 of ``canonical_json(data)`` (64 characters)."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


__all__ = ["canonical_json", "sha256_checksum"]
