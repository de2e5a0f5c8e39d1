"""
spec-trace — error and warning taxonomy

File: src/spec_trace/errors.py

Purpose
- Typed failures raised by the parser, graph builder, lifecycle gate and
  project loader, plus the non-fatal warning records collected by stages.

Functional requirements
- Fatal errors carry enough structure (path, location, identifiers) for the
  diagnostics reporter to emit a stable code and originating subject.
- Warning records are collected, never raised.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path


class SpecTraceError(Exception):
    """Base class for all compiler failures."""


class SchemaError(SpecTraceError, ValueError):
    """Malformed document structure; aborts loading of that document."""

    path: str
    location: str
    message: str
    hint: str
    subject: str | None

    def __init__(
        self,
        *,
        path: str | Path,
        location: str,
        message: str,
        hint: str = "",
        subject: str | None = None,
    ) -> None:
        self.path = str(path)
        self.location = location
        self.message = message
        self.hint = hint
        self.subject = subject
        text = f"{self.path} [{location}] {message}"
        if hint:
            text = f"{text} (hint: {hint})"
        super().__init__(text)


class DuplicateIdentifierError(SchemaError):
    """The same identifier is declared twice within one document kind."""

    identifier: str

    def __init__(self, *, path: str | Path, location: str, identifier: str, other: str) -> None:
        self.identifier = identifier
        super().__init__(
            path=path,
            location=location,
            message=f"duplicate identifier {identifier} (first declared in {other})",
            hint="Identifiers must be unique per document kind within a project",
            subject=identifier,
        )


class RuleSetError(SchemaError):
    """Malformed constitution rule file."""


class GraphError(SpecTraceError):
    """Reference graph construction failure; aborts compilation of the project."""


class DanglingReferenceError(GraphError):
    """An explicit reference points at an identifier absent from every document."""

    source: str
    target: str
    field: str

    def __init__(self, *, source: str, target: str, field: str) -> None:
        self.source = source
        self.target = target
        self.field = field
        super().__init__(f"{source}.{field} references unknown identifier {target}")


class CycleError(GraphError):
    """Raised when a cycle is detected in the reference graph."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Reference graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Reference graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class PromotionBlockedError(SpecTraceError):
    """A specification with pending clarifications cannot be promoted to ready."""

    requirement_ids: tuple[str, ...]

    def __init__(self, requirement_ids: Sequence[str]) -> None:
        self.requirement_ids = tuple(requirement_ids)
        joined = ", ".join(self.requirement_ids)
        super().__init__(f"clarification pending for: {joined}")


class OrphanedItemError(SpecTraceError):
    """A derived item has no live upstream left to regenerate from."""

    item_id: str
    upstream: tuple[str, ...]

    def __init__(self, item_id: str, upstream: Sequence[str]) -> None:
        self.item_id = item_id
        self.upstream = tuple(upstream)
        super().__init__(
            f"{item_id} is orphaned: none of {list(self.upstream)} exist in the specification"
        )


class ProjectLoadError(SpecTraceError):
    """Document files could not be read or written."""

    path: str

    def __init__(self, path: str | Path, message: str) -> None:
        self.path = str(path)
        super().__init__(f"{self.path}: {message}")


class RuleEvaluationError(SpecTraceError):
    """A constitution rule predicate raised instead of returning a verdict."""

    rule_id: str
    node_id: str

    def __init__(self, rule_id: str, node_id: str, cause: BaseException) -> None:
        self.rule_id = rule_id
        self.node_id = node_id
        super().__init__(
            f"rule {rule_id} failed on {node_id}: {type(cause).__name__}: {cause}"
        )


class SpecTraceWarning(UserWarning):
    """Base class for non-fatal findings collected by a stage."""

    subject: str

    def __init__(self, subject: str, message: str) -> None:
        self.subject = subject
        super().__init__(message)


class ClarificationPending(SpecTraceWarning):
    """A requirement or scenario still carries the clarification marker."""

    path: str

    def __init__(self, subject: str, *, path: str, excerpt: str) -> None:
        self.path = path
        super().__init__(subject, f"{subject} needs clarification: {excerpt}")


class DerivationConflict(SpecTraceWarning):
    """Regeneration would overwrite authored content; kept for manual resolution."""

    upstream: tuple[str, ...]

    def __init__(self, subject: str, *, upstream: Sequence[str], reason: str) -> None:
        self.upstream = tuple(upstream)
        super().__init__(subject, f"{subject}: {reason}")


__all__ = [
    "ClarificationPending",
    "CycleError",
    "DanglingReferenceError",
    "DerivationConflict",
    "DuplicateIdentifierError",
    "GraphError",
    "OrphanedItemError",
    "ProjectLoadError",
    "PromotionBlockedError",
    "RuleEvaluationError",
    "RuleSetError",
    "SchemaError",
    "SpecTraceError",
    "SpecTraceWarning",
]
