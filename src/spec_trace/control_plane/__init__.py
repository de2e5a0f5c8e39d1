"""Compilation pipeline: per-project stage orchestration and multi-project fan-out."""

from spec_trace.control_plane.pipeline import (
    ProjectResult,
    RenderedOutput,
    RunResult,
    TraceOutcome,
    compile_project,
    compile_projects,
    diff_projects,
    load_constitution,
    resolve_project,
    trace_identifier,
    validate_project,
    validate_projects,
)

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
