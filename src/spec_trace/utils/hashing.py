"""
spec-trace — hashing utilities

File: src/spec_trace/utils/hashing.py

Purpose
- Deterministic SHA-256 helpers and the canonical JSON encoding used to stamp
  derived entities with the digest of the upstream content they came from.

Functional requirements
- Canonical JSON is key-sorted, compact and ASCII-safe so equal values always
  hash to the same digest regardless of dict insertion order.
"""

from __future__ import annotations

import hashlib
import json

from spec_trace.constants import SOURCE_DIGEST_LENGTH

__all__ = [
    "canonical_json",
    "content_digest",
    "sha256_bytes",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def content_digest(value: object, *, length: int = SOURCE_DIGEST_LENGTH) -> str:
    """Truncated SHA-256 of ``value``'s canonical JSON encoding."""

    if not 8 <= length <= 64:
        raise ValueError("length must be between 8 and 64")
    return sha256_text(canonical_json(value))[:length]
