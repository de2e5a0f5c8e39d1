"""
spec-trace — diagnostics reporter

File: src/spec_trace/diagnostics/report.py

Purpose
- Collects findings from every pipeline stage into one deterministic report
  with stable machine-readable codes.

What should be included in this file
- ``Diagnostic`` records (code, severity, message, subject, project, stage).
- ``DiagnosticReport``: sorted, immutable, JSON-serializable; strict-mode
  escalation; exit-code contribution.
- ``DiagnosticCollector``: append-only accumulator, plus mapping from the
  error/warning taxonomy to stable codes.

Functional requirements
- Output order must not depend on evaluation order or worker count.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from enum import IntEnum, StrEnum
from typing import Final

from spec_trace.constants import SEVERITY_RANK
from spec_trace.errors import (
    ClarificationPending,
    CycleError,
    DanglingReferenceError,
    DerivationConflict,
    DuplicateIdentifierError,
    ProjectLoadError,
    RuleSetError,
    SchemaError,
    SpecTraceWarning,
)


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    VALIDATION_FAILED = 1
    IO_ERROR = 2
    INTERNAL_ERROR = 3


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self.value]


class Stage(StrEnum):
    LOAD = "load"
    PARSE = "parse"
    GRAPH = "graph"
    DERIVE = "derive"
    CHECK = "check"


STAGE_ORDER: Final[dict[Stage, int]] = {stage: index for index, stage in enumerate(Stage)}

# Stable diagnostic codes.
IO_ERROR: Final[str] = "io.error"
SCHEMA_INVALID: Final[str] = "schema.invalid"
SCHEMA_DUPLICATE_ID: Final[str] = "schema.duplicate-id"
GRAPH_DANGLING_REFERENCE: Final[str] = "graph.dangling-reference"
GRAPH_CYCLE: Final[str] = "graph.cycle"
GRAPH_ORPHAN_REFERENCE: Final[str] = "graph.orphan-reference"
CLARIFICATION_PENDING: Final[str] = "clarification.pending"
CLARIFICATION_BLOCKS_READY: Final[str] = "clarification.blocks-ready"
COVERAGE_REQUIREMENT_UNPLANNED: Final[str] = "coverage.requirement-unplanned"
COVERAGE_PLAN_ITEM_UNTASKED: Final[str] = "coverage.plan-item-untasked"
COVERAGE_TASK_UNTESTED: Final[str] = "coverage.task-untested"
DERIVATION_CONFLICT: Final[str] = "derivation.conflict"
DERIVATION_ORPHANED: Final[str] = "derivation.orphaned"
DERIVATION_NEEDS_ELABORATION: Final[str] = "derivation.needs-elaboration"
DERIVATION_TASKS_BLOCKED: Final[str] = "derivation.tasks-blocked"
COMPLIANCE_VIOLATION: Final[str] = "compliance.violation"
COMPLIANCE_UNKNOWN_RULE: Final[str] = "compliance.unknown-rule"
COMPLIANCE_RULE_EVALUATION_ERROR: Final[str] = "compliance.rule-evaluation-error"
CONSTITUTION_INVALID: Final[str] = "constitution.invalid"
INTERNAL_ERROR: Final[str] = "internal.error"

DEFAULT_SEVERITY: Final[dict[str, Severity]] = {
    IO_ERROR: Severity.ERROR,
    SCHEMA_INVALID: Severity.ERROR,
    SCHEMA_DUPLICATE_ID: Severity.ERROR,
    GRAPH_DANGLING_REFERENCE: Severity.ERROR,
    GRAPH_CYCLE: Severity.ERROR,
    GRAPH_ORPHAN_REFERENCE: Severity.INFO,
    CLARIFICATION_PENDING: Severity.WARNING,
    CLARIFICATION_BLOCKS_READY: Severity.ERROR,
    COVERAGE_REQUIREMENT_UNPLANNED: Severity.ERROR,
    COVERAGE_PLAN_ITEM_UNTASKED: Severity.ERROR,
    COVERAGE_TASK_UNTESTED: Severity.INFO,
    DERIVATION_CONFLICT: Severity.WARNING,
    DERIVATION_ORPHANED: Severity.WARNING,
    DERIVATION_NEEDS_ELABORATION: Severity.INFO,
    DERIVATION_TASKS_BLOCKED: Severity.ERROR,
    COMPLIANCE_VIOLATION: Severity.ERROR,
    COMPLIANCE_UNKNOWN_RULE: Severity.ERROR,
    COMPLIANCE_RULE_EVALUATION_ERROR: Severity.ERROR,
    CONSTITUTION_INVALID: Severity.ERROR,
    INTERNAL_ERROR: Severity.ERROR,
}
CODES: Final[tuple[str, ...]] = tuple(sorted(DEFAULT_SEVERITY))

# Codes whose errors mean the inputs could not be read at all.
_IO_CODES: Final[frozenset[str]] = frozenset({IO_ERROR})


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One finding, attributed to the identifier or path it concerns."""

    code: str
    severity: Severity
    message: str
    subject: str = ""
    project: str = ""
    stage: Stage = Stage.CHECK

    def __post_init__(self) -> None:
        if not self.code or "." not in self.code:
            raise ValueError(f"diagnostic code must be dotted, got {self.code!r}")
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "stage", Stage(self.stage))

    def sort_key(self) -> tuple[int, str, int, str, str, str]:
        return (
            self.severity.rank,
            self.project,
            STAGE_ORDER[self.stage],
            self.subject,
            self.code,
            self.message,
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "subject": self.subject,
            "project": self.project,
            "stage": self.stage.value,
        }


@dataclass(frozen=True, slots=True)
class DiagnosticReport:
    """Immutable, deterministically ordered set of diagnostics."""

    diagnostics: tuple[Diagnostic, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "diagnostics", tuple(sorted(self.diagnostics, key=Diagnostic.sort_key))
        )

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diagnostics)

    def __len__(self) -> int:
        return len(self.diagnostics)

    @property
    def errors(self) -> tuple[Diagnostic, ...]:
        return self._with_severity(Severity.ERROR)

    @property
    def warnings(self) -> tuple[Diagnostic, ...]:
        return self._with_severity(Severity.WARNING)

    @property
    def infos(self) -> tuple[Diagnostic, ...]:
        return self._with_severity(Severity.INFO)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def worst_severity(self) -> Severity | None:
        if not self.diagnostics:
            return None
        return self.diagnostics[0].severity

    @property
    def exit_code(self) -> ExitCode:
        """Exit status contribution; internal, then I/O, then validation failures."""
        errors = self.errors
        if any(item.code == INTERNAL_ERROR for item in errors):
            return ExitCode.INTERNAL_ERROR
        if any(item.code in _IO_CODES for item in errors):
            return ExitCode.IO_ERROR
        if errors:
            return ExitCode.VALIDATION_FAILED
        return ExitCode.SUCCESS

    def with_code(self, code: str) -> tuple[Diagnostic, ...]:
        return tuple(item for item in self.diagnostics if item.code == code)

    def for_project(self, project: str) -> DiagnosticReport:
        return DiagnosticReport(tuple(item for item in self.diagnostics if item.project == project))

    def projects(self) -> tuple[str, ...]:
        return tuple(sorted({item.project for item in self.diagnostics}))

    def merge(self, *others: DiagnosticReport) -> DiagnosticReport:
        combined = list(self.diagnostics)
        for other in others:
            combined.extend(other.diagnostics)
        return DiagnosticReport(tuple(combined))

    def escalate(self, code: str, to: Severity = Severity.ERROR) -> DiagnosticReport:
        """Return a copy with every ``code`` diagnostic raised to ``to`` (never lowered)."""
        target = Severity(to)
        return DiagnosticReport(
            tuple(
                replace(item, severity=target)
                if item.code == code and target.rank < item.severity.rank
                else item
                for item in self.diagnostics
            )
        )

    def counts(self) -> dict[str, int]:
        return {
            Severity.ERROR.value: len(self.errors),
            Severity.WARNING.value: len(self.warnings),
            Severity.INFO.value: len(self.infos),
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "summary": self.counts(),
            "diagnostics": [item.to_dict() for item in self.diagnostics],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=True)

    def _with_severity(self, severity: Severity) -> tuple[Diagnostic, ...]:
        return tuple(item for item in self.diagnostics if item.severity is severity)


class DiagnosticCollector:
    """Append-only accumulator bound to one project."""

    __slots__ = ("_items", "_project")

    def __init__(self, project: str = "") -> None:
        self._project = project
        self._items: list[Diagnostic] = []

    @property
    def project(self) -> str:
        return self._project

    def __len__(self) -> int:
        return len(self._items)

    def add(
        self,
        code: str,
        message: str,
        *,
        subject: str = "",
        stage: Stage = Stage.CHECK,
        severity: Severity | None = None,
    ) -> Diagnostic:
        resolved = severity if severity is not None else DEFAULT_SEVERITY.get(code, Severity.ERROR)
        diagnostic = Diagnostic(
            code=code,
            severity=resolved,
            message=message,
            subject=subject,
            project=self._project,
            stage=stage,
        )
        self._items.append(diagnostic)
        return diagnostic

    def add_exception(self, exc: BaseException, *, stage: Stage) -> Diagnostic:
        code, subject = classify_exception(exc)
        return self.add(code, str(exc), subject=subject, stage=stage, severity=Severity.ERROR)

    def add_warning(self, warning: SpecTraceWarning, *, stage: Stage) -> Diagnostic:
        code = classify_warning(warning)
        return self.add(code, str(warning), subject=warning.subject, stage=stage)

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        self._items.extend(diagnostics)

    def has_errors(self) -> bool:
        return any(item.severity is Severity.ERROR for item in self._items)

    def report(self) -> DiagnosticReport:
        return DiagnosticReport(tuple(self._items))


def classify_exception(exc: BaseException) -> tuple[str, str]:
    """Map a stage failure onto ``(code, subject)``."""

    if isinstance(exc, RuleSetError):
        return CONSTITUTION_INVALID, exc.path
    if isinstance(exc, DuplicateIdentifierError):
        return SCHEMA_DUPLICATE_ID, exc.identifier
    if isinstance(exc, SchemaError):
        return SCHEMA_INVALID, exc.subject or exc.path
    if isinstance(exc, DanglingReferenceError):
        return GRAPH_DANGLING_REFERENCE, exc.source
    if isinstance(exc, CycleError):
        subject = exc.cycles[0][0] if exc.cycles else ""
        return GRAPH_CYCLE, subject
    if isinstance(exc, ProjectLoadError):
        return IO_ERROR, exc.path
    if isinstance(exc, OSError):
        return IO_ERROR, str(exc.filename or "")
    raise TypeError(f"no diagnostic code for {type(exc).__name__}") from exc


def classify_warning(warning: SpecTraceWarning) -> str:
    if isinstance(warning, ClarificationPending):
        return CLARIFICATION_PENDING
    if isinstance(warning, DerivationConflict):
        return DERIVATION_CONFLICT
    raise TypeError(f"no diagnostic code for {type(warning).__name__}")


__all__ = [
    "CLARIFICATION_BLOCKS_READY",
    "CLARIFICATION_PENDING",
    "CODES",
    "COMPLIANCE_RULE_EVALUATION_ERROR",
    "COMPLIANCE_UNKNOWN_RULE",
    "COMPLIANCE_VIOLATION",
    "CONSTITUTION_INVALID",
    "COVERAGE_PLAN_ITEM_UNTASKED",
    "COVERAGE_REQUIREMENT_UNPLANNED",
    "COVERAGE_TASK_UNTESTED",
    "DEFAULT_SEVERITY",
    "DERIVATION_CONFLICT",
    "DERIVATION_NEEDS_ELABORATION",
    "DERIVATION_ORPHANED",
    "DERIVATION_TASKS_BLOCKED",
    "Diagnostic",
    "DiagnosticCollector",
    "DiagnosticReport",
    "ExitCode",
    "GRAPH_CYCLE",
    "GRAPH_DANGLING_REFERENCE",
    "GRAPH_ORPHAN_REFERENCE",
    "INTERNAL_ERROR",
    "IO_ERROR",
    "SCHEMA_DUPLICATE_ID",
    "SCHEMA_INVALID",
    "STAGE_ORDER",
    "Severity",
    "Stage",
    "classify_exception",
    "classify_warning",
]
