"""Utility exports for filesystem, hashing, and concurrency helpers."""

from spec_trace.utils.concurrency import BoundedSemaphore, WorkerPool, run_in_threads
from spec_trace.utils.fs import atomic_write_text
from spec_trace.utils.hashing import canonical_json, content_digest, sha256_bytes, sha256_text

__all__ = [
    "BoundedSemaphore",
    "WorkerPool",
    "atomic_write_text",
    "canonical_json",
    "content_digest",
    "run_in_threads",
    "sha256_bytes",
    "sha256_text",
]
