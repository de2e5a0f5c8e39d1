"""
spec-trace — planning plane

File: src/spec_trace/planning/__init__.py

Purpose
- Cross-document reference graph plus the merge-aware derivation of plan items
  and tasks from upstream documents.
"""

from spec_trace.planning.derivation import (
    ChangeAction,
    DerivationChange,
    PlanDerivation,
    PlanDraft,
    RegenerationStatus,
    TaskDerivation,
    TaskDraft,
    derive_plan,
    derive_tasks,
    draft_plan,
    draft_tasks,
    merge_plan,
    merge_tasks,
    plan_regeneration_status,
    resolve_conflict,
)
from spec_trace.planning.reference_graph import (
    CoverageKind,
    EdgeKind,
    GraphEdge,
    GraphNode,
    OrphanReference,
    ReferenceGraph,
    TraceResult,
)

__all__ = [
    "ChangeAction",
    "CoverageKind",
    "DerivationChange",
    "EdgeKind",
    "GraphEdge",
    "GraphNode",
    "OrphanReference",
    "PlanDerivation",
    "PlanDraft",
    "ReferenceGraph",
    "RegenerationStatus",
    "TaskDerivation",
    "TaskDraft",
    "TraceResult",
    "derive_plan",
    "derive_tasks",
    "draft_plan",
    "draft_tasks",
    "merge_plan",
    "merge_tasks",
    "plan_regeneration_status",
    "resolve_conflict",
]
