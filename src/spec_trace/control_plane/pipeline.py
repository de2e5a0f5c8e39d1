"""
spec-trace — compilation pipeline

File: src/spec_trace/control_plane/pipeline.py

Purpose
- Drives one project through load -> parse -> graph -> derive -> check and
  turns every stage outcome into diagnostics; fans out across independent
  projects on a bounded worker pool.

What should be included in this file
- ``compile_project`` / ``compile_projects``: full pipeline, optional write.
- ``validate_project``: parse, graph and coverage over the documents on disk.
- ``diff_projects``: what ``compile`` would write, as unified diffs.
- ``trace_identifier`` and ``resolve_project`` for the CLI.

Functional requirements
- A fatal stage failure ends that project only; siblings still compile.
- Plan-item compliance errors block task derivation.
- Results are returned in input order regardless of worker count.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Literal

from spec_trace.compliance import RuleSet, Violation, check, load_rule_set
from spec_trace.config import Settings
from spec_trace.diagnostics.report import (
    CLARIFICATION_BLOCKS_READY,
    CLARIFICATION_PENDING,
    COVERAGE_PLAN_ITEM_UNTASKED,
    COVERAGE_REQUIREMENT_UNPLANNED,
    COVERAGE_TASK_UNTESTED,
    DERIVATION_NEEDS_ELABORATION,
    DERIVATION_ORPHANED,
    DERIVATION_TASKS_BLOCKED,
    GRAPH_ORPHAN_REFERENCE,
    INTERNAL_ERROR,
    DiagnosticCollector,
    DiagnosticReport,
    ExitCode,
    Severity,
    Stage,
)
from spec_trace.domain.ids import IdCategory
from spec_trace.domain.models import (
    Document,
    EntityFlag,
    LifecycleState,
    PlanDocument,
    SpecStatus,
    TaskDocument,
    project_lifecycle,
    promote_to_ready,
)
from spec_trace.errors import (
    GraphError,
    OrphanedItemError,
    ProjectLoadError,
    PromotionBlockedError,
    SchemaError,
)
from spec_trace.observability import correlation_scope
from spec_trace.persistence.store import (
    LoadedProject,
    ProjectFiles,
    discover_projects,
    load_project,
    read_text,
    render_document,
    unified_diff,
    write_document,
)
from spec_trace.planning import (
    ChangeAction,
    CoverageKind,
    DerivationChange,
    ReferenceGraph,
    RegenerationStatus,
    TraceResult,
    derive_plan,
    derive_tasks,
    plan_regeneration_status,
    resolve_conflict,
)
from spec_trace.utils.concurrency import run_in_threads

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RenderedOutput:
    """A derived document rendered for ``path``, next to the text currently there."""

    path: Path
    before: str | None
    after: str

    @property
    def changed(self) -> bool:
        return self.before != self.after

    def diff(self) -> str:
        return unified_diff(self.path, self.before, self.after)


@dataclass(frozen=True, slots=True)
class ProjectResult:
    name: str
    report: DiagnosticReport
    lifecycle: LifecycleState | None = None
    plan: PlanDocument | None = None
    tasks: TaskDocument | None = None
    graph: ReferenceGraph | None = None
    changes: tuple[DerivationChange, ...] = ()
    outputs: tuple[RenderedOutput, ...] = ()
    written: tuple[Path, ...] = ()
    regeneration: RegenerationStatus | None = None

    @property
    def exit_code(self) -> ExitCode:
        return self.report.exit_code

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "project": self.name,
            "lifecycle": self.lifecycle.value if self.lifecycle is not None else None,
            "changes": [change.to_dict() for change in self.changes],
            "written": [path.as_posix() for path in self.written],
        }
        if self.regeneration is not None:
            payload["regeneration"] = self.regeneration.to_dict()
        if self.outputs:
            payload["diffs"] = {
                output.path.as_posix(): output.diff() for output in self.outputs if output.changed
            }
        return payload


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of one command across every discovered project."""

    projects: tuple[ProjectResult, ...] = ()
    run_diagnostics: DiagnosticReport = field(default_factory=DiagnosticReport)

    @property
    def report(self) -> DiagnosticReport:
        return self.run_diagnostics.merge(*(project.report for project in self.projects))

    @property
    def exit_code(self) -> ExitCode:
        return self.report.exit_code

    def to_dict(self) -> dict[str, object]:
        return {
            "projects": [project.to_dict() for project in self.projects],
            "report": self.report.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class TraceOutcome:
    trace: TraceResult | None
    report: DiagnosticReport


# ---------------------------------------------------------------------------
# Run-level entrypoints
# ---------------------------------------------------------------------------


def load_constitution(settings: Settings) -> RuleSet:
    """
    Load the rule set named by ``settings``.

    A missing file at the default location means "no rules"; a missing file
    that was configured explicitly is an error.
    """

    path = settings.constitution_path
    if not path.exists() and not settings.constitution_explicit:
        _LOGGER.debug("no constitution found; running without rules", extra={"path": path})
        return RuleSet()
    rules = load_rule_set(path)
    _LOGGER.debug("constitution loaded", extra={"path": path, "rules": len(rules)})
    return rules


def compile_projects(path: str | Path, settings: Settings, *, write: bool = True) -> RunResult:
    """Compile every project under ``path``; projects run in parallel up to ``max_workers``."""

    run = DiagnosticCollector()
    try:
        projects = discover_projects(path)
    except ProjectLoadError as exc:
        run.add_exception(exc, stage=Stage.LOAD)
        return RunResult(run_diagnostics=run.report())

    try:
        rules = load_constitution(settings)
    except (SchemaError, OSError) as exc:
        run.add_exception(exc, stage=Stage.LOAD)
        return RunResult(run_diagnostics=run.report())

    results = run_in_threads(
        partial(compile_project, rules=rules, settings=settings, write=write),
        projects,
        max_workers=settings.max_workers,
    )
    return RunResult(projects=tuple(results), run_diagnostics=run.report())


def validate_projects(path: str | Path, settings: Settings) -> RunResult:
    run = DiagnosticCollector()
    try:
        projects = discover_projects(path)
    except ProjectLoadError as exc:
        run.add_exception(exc, stage=Stage.LOAD)
        return RunResult(run_diagnostics=run.report())

    results = run_in_threads(
        partial(validate_project, settings=settings),
        projects,
        max_workers=settings.max_workers,
    )
    return RunResult(projects=tuple(results), run_diagnostics=run.report())


def diff_projects(path: str | Path, settings: Settings) -> RunResult:
    """Everything ``compile`` would do, without writing."""

    return compile_projects(path, settings, write=False)


# ---------------------------------------------------------------------------
# Per-project pipelines
# ---------------------------------------------------------------------------


def compile_project(
    files: ProjectFiles,
    *,
    rules: RuleSet,
    settings: Settings,
    write: bool = True,
) -> ProjectResult:
    """Run the full pipeline for one project and persist derived documents when ``write``."""

    collector = DiagnosticCollector(files.name)
    with correlation_scope(project=files.name):
        try:
            return _compile(files, collector, rules=rules, settings=settings, write=write)
        except Exception as exc:  # noqa: BLE001
            return _internal_failure(files, collector, settings, exc)


def _compile(
    files: ProjectFiles,
    collector: DiagnosticCollector,
    *,
    rules: RuleSet,
    settings: Settings,
    write: bool,
) -> ProjectResult:
    loaded = _load(files, settings, collector)
    if loaded is None:
        return _finish(files, collector, settings)

    _record_spec_findings(loaded, collector)

    with correlation_scope(stage=Stage.GRAPH.value):
        # Requirement dependency cycles must surface before anything is derived.
        if _build_graph((loaded.spec,), collector) is None:
            return _finish(files, collector, settings)

    with correlation_scope(stage=Stage.DERIVE.value):
        plan_result = derive_plan(loaded.spec, loaded.plan)
        for conflict in plan_result.conflicts:
            collector.add_warning(conflict, stage=Stage.DERIVE)
        plan = plan_result.plan
        changes = list(plan_result.changes)
        _LOGGER.debug("plan derived", extra={"summary": plan_result.summary()})

        plan_graph = _build_graph((loaded.spec, plan), collector)
        if plan_graph is None:
            return _finish(files, collector, settings, plan=plan, changes=tuple(changes))

        blocking = _blocking_items(
            check(
                plan_graph,
                rules,
                max_workers=settings.max_workers,
                kinds=(IdCategory.PLAN_ITEM,),
            )
        )
        tasks: TaskDocument | None
        derived_tasks = False
        if blocking:
            for item_id, count in sorted(blocking.items()):
                collector.add(
                    DERIVATION_TASKS_BLOCKED,
                    f"tasks not derived: {item_id} has {count} compliance error(s)",
                    subject=item_id,
                    stage=Stage.DERIVE,
                )
            tasks = loaded.tasks
        else:
            task_result = derive_tasks(plan, loaded.tasks)
            for conflict in task_result.conflicts:
                collector.add_warning(conflict, stage=Stage.DERIVE)
            tasks = task_result.tasks
            changes.extend(task_result.changes)
            derived_tasks = True
            _LOGGER.debug("tasks derived", extra={"summary": task_result.summary()})

        _record_flags(plan, tasks, collector)

    documents: tuple[Document, ...] = (
        (loaded.spec, plan) if tasks is None else (loaded.spec, plan, tasks)
    )
    with correlation_scope(stage=Stage.CHECK.value):
        graph = _build_graph(documents, collector)
        if graph is not None:
            _record_orphan_references(graph, collector)
            for violation in check(graph, rules, max_workers=settings.max_workers):
                _record_violation(violation, collector)
            lifecycle = project_lifecycle(loaded.spec, plan, tasks)
            _record_coverage(graph, lifecycle, collector)

    outputs = [_render(plan, files.plan)]
    if derived_tasks and tasks is not None:
        outputs.append(_render(tasks, files.tasks))

    written: list[Path] = []
    if write:
        with correlation_scope(stage="write"):
            written = _write_outputs(plan, tasks if derived_tasks else None, files, collector)

    return _finish(
        files,
        collector,
        settings,
        lifecycle=project_lifecycle(loaded.spec, plan, tasks),
        plan=plan,
        tasks=tasks,
        graph=graph,
        changes=tuple(changes),
        outputs=tuple(outputs),
        written=tuple(written),
        regeneration=plan_regeneration_status(loaded.spec, loaded.plan),
    )


def validate_project(files: ProjectFiles, *, settings: Settings) -> ProjectResult:
    """Parse and link the documents on disk and check coverage; derive nothing."""

    collector = DiagnosticCollector(files.name)
    with correlation_scope(project=files.name):
        try:
            return _validate(files, collector, settings=settings)
        except Exception as exc:  # noqa: BLE001
            return _internal_failure(files, collector, settings, exc)


def _validate(
    files: ProjectFiles, collector: DiagnosticCollector, *, settings: Settings
) -> ProjectResult:
    loaded = _load(files, settings, collector)
    if loaded is None:
        return _finish(files, collector, settings)

    _record_spec_findings(loaded, collector)
    documents = _documents(loaded)
    with correlation_scope(stage=Stage.GRAPH.value):
        graph = _build_graph(documents, collector)
    if graph is None:
        return _finish(files, collector, settings)

    lifecycle = project_lifecycle(loaded.spec, loaded.plan, loaded.tasks)
    if loaded.plan is not None:
        _record_flags(loaded.plan, loaded.tasks, collector)
    _record_orphan_references(graph, collector)
    _record_coverage(graph, lifecycle, collector)
    return _finish(
        files,
        collector,
        settings,
        lifecycle=lifecycle,
        plan=loaded.plan,
        tasks=loaded.tasks,
        graph=graph,
    )


def trace_identifier(files: ProjectFiles, identifier: str, *, settings: Settings) -> TraceOutcome:
    """
    Upstream and downstream closure of ``identifier`` over the documents on disk.

    Raises ``KeyError`` when the graph builds but holds no such identifier.
    """

    collector = DiagnosticCollector(files.name)
    with correlation_scope(project=files.name):
        loaded = _load(files, settings, collector)
        graph = None if loaded is None else _build_graph(_documents(loaded), collector)
    if graph is None:
        return TraceOutcome(trace=None, report=collector.report())
    return TraceOutcome(trace=graph.trace(identifier), report=collector.report())


def resolve_project(
    files: ProjectFiles,
    item_id: str,
    *,
    keep: Literal["author", "upstream"],
    settings: Settings,
) -> ProjectResult:
    """Resolve a derivation conflict on ``item_id`` and write the plan back."""

    collector = DiagnosticCollector(files.name)
    with correlation_scope(project=files.name):
        loaded = _load(files, settings, collector)
        if loaded is None:
            return _finish(files, collector, settings)
        if loaded.plan is None:
            collector.add_exception(
                ProjectLoadError(files.plan, "no plan to resolve; run compile first"),
                stage=Stage.LOAD,
            )
            return _finish(files, collector, settings)

        try:
            plan = resolve_conflict(loaded.plan, item_id, loaded.spec, keep=keep)
        except OrphanedItemError as exc:
            collector.add(
                DERIVATION_ORPHANED,
                f"{exc}; keep the author version or delete the item",
                subject=item_id,
                stage=Stage.DERIVE,
                severity=Severity.ERROR,
            )
            return _finish(files, collector, settings, plan=loaded.plan, tasks=loaded.tasks)
        written = _write_outputs(plan, None, files, collector)
        _LOGGER.info("conflict resolved", extra={"item": item_id, "keep": keep})
        return _finish(
            files,
            collector,
            settings,
            lifecycle=project_lifecycle(loaded.spec, plan, loaded.tasks),
            plan=plan,
            tasks=loaded.tasks,
            changes=(DerivationChange(ChangeAction.PRESERVED, item_id, f"resolved: keep {keep}"),),
            written=tuple(written),
        )


# ---------------------------------------------------------------------------
# Stage helpers
# ---------------------------------------------------------------------------


def _load(
    files: ProjectFiles, settings: Settings, collector: DiagnosticCollector
) -> LoadedProject | None:
    with correlation_scope(stage=Stage.LOAD.value):
        try:
            loaded = load_project(files, marker=settings.clarification_marker)
        except ProjectLoadError as exc:
            collector.add_exception(exc, stage=Stage.LOAD)
            return None
        except SchemaError as exc:
            collector.add_exception(exc, stage=Stage.PARSE)
            return None
    _LOGGER.debug(
        "project loaded",
        extra={"has_plan": loaded.plan is not None, "has_tasks": loaded.tasks is not None},
    )
    return loaded


def _documents(loaded: LoadedProject) -> tuple[Document, ...]:
    documents: list[Document] = [loaded.spec]
    if loaded.plan is not None:
        documents.append(loaded.plan)
    if loaded.tasks is not None:
        documents.append(loaded.tasks)
    return tuple(documents)


def _build_graph(
    documents: Sequence[Document], collector: DiagnosticCollector
) -> ReferenceGraph | None:
    try:
        return ReferenceGraph.build(documents)
    except (GraphError, SchemaError) as exc:
        collector.add_exception(exc, stage=Stage.GRAPH)
        return None


def _record_spec_findings(loaded: LoadedProject, collector: DiagnosticCollector) -> None:
    for warning in loaded.warnings:
        collector.add_warning(warning, stage=Stage.PARSE)
    if loaded.spec.status is not SpecStatus.READY:
        return
    try:
        promote_to_ready(loaded.spec)
    except PromotionBlockedError as exc:
        collector.add(
            CLARIFICATION_BLOCKS_READY,
            f"specification is marked ready but {exc}",
            subject=loaded.spec.path,
            stage=Stage.PARSE,
        )


def _record_flags(
    plan: PlanDocument, tasks: TaskDocument | None, collector: DiagnosticCollector
) -> None:
    for item in plan.items:
        if item.flag is EntityFlag.ORPHANED:
            collector.add(
                DERIVATION_ORPHANED,
                f"{item.id} no longer implements any requirement; confirm removal",
                subject=item.id,
                stage=Stage.DERIVE,
            )
        elif item.flag is EntityFlag.NEEDS_ELABORATION:
            collector.add(
                DERIVATION_NEEDS_ELABORATION,
                f"{item.id} needs elaboration before implementation",
                subject=item.id,
                stage=Stage.DERIVE,
            )
    for task in tasks.tasks if tasks is not None else ():
        if task.flag is EntityFlag.ORPHANED:
            collector.add(
                DERIVATION_ORPHANED,
                f"{task.id} no longer derives from a live plan item; confirm removal",
                subject=task.id,
                stage=Stage.DERIVE,
            )


def _blocking_items(violations: Sequence[Violation]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for violation in violations:
        if violation.severity == Severity.ERROR.value:
            counts[violation.node_id] = counts.get(violation.node_id, 0) + 1
    return counts


def _record_violation(violation: Violation, collector: DiagnosticCollector) -> None:
    collector.add(
        violation.code,
        violation.message,
        subject=violation.node_id,
        stage=Stage.CHECK,
        severity=Severity(violation.severity),
    )


def _record_orphan_references(graph: ReferenceGraph, collector: DiagnosticCollector) -> None:
    for ref in graph.orphan_references:
        collector.add(
            GRAPH_ORPHAN_REFERENCE,
            f"orphaned {ref.source}.{ref.field} still references removed {ref.target}",
            subject=ref.source,
            stage=Stage.GRAPH,
        )


def _record_coverage(
    graph: ReferenceGraph, lifecycle: LifecycleState, collector: DiagnosticCollector
) -> None:
    if lifecycle in (LifecycleState.PLANNED, LifecycleState.TASKED):
        for requirement_id in graph.coverage(CoverageKind.REQUIREMENT):
            collector.add(
                COVERAGE_REQUIREMENT_UNPLANNED,
                f"{requirement_id} is not implemented by any plan item",
                subject=requirement_id,
                stage=Stage.CHECK,
            )
    if lifecycle is LifecycleState.TASKED:
        for item_id in graph.coverage(CoverageKind.PLAN_ITEM):
            collector.add(
                COVERAGE_PLAN_ITEM_UNTASKED,
                f"{item_id} has no task",
                subject=item_id,
                stage=Stage.CHECK,
            )
        for task_id in graph.coverage(CoverageKind.TASK):
            collector.add(
                COVERAGE_TASK_UNTESTED,
                f"{task_id} declares no test",
                subject=task_id,
                stage=Stage.CHECK,
            )


def _render(document: PlanDocument | TaskDocument, path: Path) -> RenderedOutput:
    return RenderedOutput(
        path=path,
        before=read_text(path, required=False),
        after=render_document(document),
    )


def _write_outputs(
    plan: PlanDocument,
    tasks: TaskDocument | None,
    files: ProjectFiles,
    collector: DiagnosticCollector,
) -> list[Path]:
    written: list[Path] = []
    targets: list[tuple[PlanDocument | TaskDocument, Path]] = [(plan, files.plan)]
    if tasks is not None:
        targets.append((tasks, files.tasks))
    for document, path in targets:
        try:
            if write_document(document, path):
                written.append(path)
        except ProjectLoadError as exc:
            collector.add_exception(exc, stage=Stage.LOAD)
    return written


def _internal_failure(
    files: ProjectFiles,
    collector: DiagnosticCollector,
    settings: Settings,
    exc: Exception,
) -> ProjectResult:
    _LOGGER.exception("project failed unexpectedly")
    collector.add(
        INTERNAL_ERROR,
        f"internal error: {type(exc).__name__}: {exc}",
        subject=files.name,
        severity=Severity.ERROR,
    )
    return _finish(files, collector, settings)


def _finish(
    files: ProjectFiles,
    collector: DiagnosticCollector,
    settings: Settings,
    **fields: object,
) -> ProjectResult:
    report = collector.report()
    if settings.strict:
        report = report.escalate(CLARIFICATION_PENDING)
    _LOGGER.info(
        "project finished",
        extra={"counts": report.counts(), "exit_code": int(report.exit_code)},
    )
    return ProjectResult(name=files.name, report=report, **fields)  # type: ignore[arg-type]


__all__ = [
    "ProjectResult",
    "RenderedOutput",
    "RunResult",
    "TraceOutcome",
    "compile_project",
    "compile_projects",
    "diff_projects",
    "load_constitution",
    "resolve_project",
    "trace_identifier",
    "validate_project",
    "validate_projects",
]
