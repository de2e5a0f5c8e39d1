"""Domain layer: identifiers and the immutable document model."""

from spec_trace.domain.ids import IdCategory, Identifier, next_identifier, parse_identifier
from spec_trace.domain.models import (
    Document,
    DocumentKind,
    EntityFlag,
    LifecycleState,
    PlanDocument,
    PlanItem,
    Requirement,
    SpecificationDocument,
    SpecStatus,
    Task,
    TaskDocument,
    TaskStatus,
    UserScenario,
    project_lifecycle,
    promote_to_ready,
)

__all__ = [
    "Document",
    "DocumentKind",
    "EntityFlag",
    "IdCategory",
    "Identifier",
    "LifecycleState",
    "PlanDocument",
    "PlanItem",
    "Requirement",
    "SpecStatus",
    "SpecificationDocument",
    "Task",
    "TaskDocument",
    "TaskStatus",
    "UserScenario",
    "next_identifier",
    "parse_identifier",
    "project_lifecycle",
    "promote_to_ready",
]
