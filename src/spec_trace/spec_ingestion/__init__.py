"""
spec-trace — spec ingestion plane

File: src/spec_trace/spec_ingestion/__init__.py

Purpose
- Turns raw YAML document text into the typed document model used by the
  graph builder and the derivation engine.

Functional requirements
- Must reject malformed structure with a located ``SchemaError``.
- Must be deterministic; same text yields the same document.
"""

from spec_trace.spec_ingestion.parser import (
    ParseResult,
    combine_specifications,
    contains_marker,
    parse_document,
    parse_plan,
    parse_specification,
    parse_tasks,
)

__all__ = [
    "ParseResult",
    "combine_specifications",
    "contains_marker",
    "parse_document",
    "parse_plan",
    "parse_specification",
    "parse_tasks",
]
