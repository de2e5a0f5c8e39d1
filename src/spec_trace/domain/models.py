"""
spec-trace — document model

File: src/spec_trace/domain/models.py

Purpose
- Typed, immutable in-memory representation of specification, plan and task
  documents and the entities they own.

Functional requirements
- Entities expose their outgoing references so the graph builder never needs
  to know per-kind field layouts.
- ``to_dict`` output uses a fixed key order; optional fields are omitted when
  empty so serialized documents stay byte-stable.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum

from spec_trace.constants import PLAN_SCHEMA_VERSION, TASKS_SCHEMA_VERSION
from spec_trace.domain.ids import IdCategory, category_of
from spec_trace.errors import PromotionBlockedError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class DocumentKind(StrEnum):
    SPECIFICATION = "specification"
    PLAN = "plan"
    TASKS = "tasks"


class SpecStatus(StrEnum):
    DRAFT = "draft"
    READY = "ready"


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class EntityFlag(StrEnum):
    NEEDS_ELABORATION = "needs_elaboration"
    ORPHANED = "orphaned"


class LifecycleState(StrEnum):
    DRAFT = "draft"
    READY = "ready"
    PLANNED = "planned"
    TASKED = "tasked"


def _has_content(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set, frozenset)):
        return bool(value)
    return True


def override_is_authored(override: Mapping[str, JSONValue]) -> bool:
    """True when any author override field carries a non-empty value."""

    return any(_has_content(value) for value in override.values())


@dataclass(frozen=True, slots=True)
class Requirement:
    """Functional or non-functional requirement."""

    id: str
    description: str
    acceptance_criteria: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    clarification: bool = False

    @property
    def category(self) -> IdCategory:
        return category_of(self.id)

    @property
    def ready_for_derivation(self) -> bool:
        return not self.clarification

    def references(self) -> tuple[tuple[str, str], ...]:
        return tuple(("depends_on", target) for target in self.depends_on)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "description": self.description,
            "acceptance_criteria": list(self.acceptance_criteria),
        }
        if self.depends_on:
            payload["depends_on"] = list(self.depends_on)
        return payload


@dataclass(frozen=True, slots=True)
class UserScenario:
    id: str
    description: str
    acceptance_criteria: tuple[str, ...] = ()
    requirements: tuple[str, ...] = ()
    clarification: bool = False

    @property
    def category(self) -> IdCategory:
        return IdCategory.USER_SCENARIO

    def references(self) -> tuple[tuple[str, str], ...]:
        return tuple(("requirements", target) for target in self.requirements)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "description": self.description,
            "acceptance_criteria": list(self.acceptance_criteria),
        }
        if self.requirements:
            payload["requirements"] = list(self.requirements)
        return payload


@dataclass(frozen=True, slots=True)
class SpecificationDocument:
    """Authored specification; the compiler never rewrites it."""

    name: str
    description: str
    functional: tuple[Requirement, ...] = ()
    non_functional: tuple[Requirement, ...] = ()
    user_scenarios: tuple[UserScenario, ...] = ()
    status: SpecStatus = SpecStatus.DRAFT
    path: str = "<memory>"

    @property
    def kind(self) -> DocumentKind:
        return DocumentKind.SPECIFICATION

    @property
    def requirements(self) -> tuple[Requirement, ...]:
        """Functional then non-functional requirements, in document order."""
        return self.functional + self.non_functional

    @property
    def entities(self) -> tuple[Requirement | UserScenario, ...]:
        return self.requirements + self.user_scenarios

    def identifiers(self) -> tuple[str, ...]:
        return tuple(entity.id for entity in self.entities)

    def requirement(self, requirement_id: str) -> Requirement | None:
        for requirement in self.requirements:
            if requirement.id == requirement_id:
                return requirement
        return None

    def pending_clarifications(self) -> tuple[str, ...]:
        return tuple(entity.id for entity in self.entities if entity.clarification)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "requirements": {
                "functional": [item.to_dict() for item in self.functional],
                "non_functional": [item.to_dict() for item in self.non_functional],
            },
            "user_scenarios": [item.to_dict() for item in self.user_scenarios],
        }


@dataclass(frozen=True, slots=True)
class PlanItem:
    """Derived unit of implementation work covering one or more requirements."""

    id: str
    title: str
    implements: tuple[str, ...]
    rules: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    flag: EntityFlag | None = None
    source_digest: str | None = None
    override: dict[str, JSONValue] = field(default_factory=dict)

    @property
    def category(self) -> IdCategory:
        return IdCategory.PLAN_ITEM

    @property
    def is_authored(self) -> bool:
        return override_is_authored(self.override)

    @property
    def is_orphaned(self) -> bool:
        return self.flag is EntityFlag.ORPHANED

    def references(self) -> tuple[tuple[str, str], ...]:
        return tuple(("implements", target) for target in self.implements) + tuple(
            ("depends_on", target) for target in self.depends_on
        )

    def evolve(self, **changes: object) -> PlanItem:
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "title": self.title,
            "implements": list(self.implements),
            "rules": list(self.rules),
            "acceptance_criteria": list(self.acceptance_criteria),
        }
        if self.depends_on:
            payload["depends_on"] = list(self.depends_on)
        if self.flag is not None:
            payload["flag"] = self.flag.value
        if self.source_digest is not None:
            payload["source_digest"] = self.source_digest
        if self.override:
            payload["override"] = dict(self.override)
        return payload


@dataclass(frozen=True, slots=True)
class PlanDocument:
    items: tuple[PlanItem, ...] = ()
    path: str = "<memory>"
    version: int = PLAN_SCHEMA_VERSION

    @property
    def kind(self) -> DocumentKind:
        return DocumentKind.PLAN

    @property
    def entities(self) -> tuple[PlanItem, ...]:
        return self.items

    def identifiers(self) -> tuple[str, ...]:
        return tuple(item.id for item in self.items)

    def item(self, item_id: str) -> PlanItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "version": self.version,
            "plan_items": [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True, slots=True)
class Task:
    """Smallest derived unit of work; owned by exactly one plan item."""

    id: str
    title: str
    plan_item: str
    status: TaskStatus = TaskStatus.PENDING
    tests: tuple[str, ...] = ()
    flag: EntityFlag | None = None
    source_digest: str | None = None
    override: dict[str, JSONValue] = field(default_factory=dict)

    @property
    def category(self) -> IdCategory:
        return IdCategory.TASK

    @property
    def is_authored(self) -> bool:
        return self.status is not TaskStatus.PENDING or override_is_authored(self.override)

    @property
    def is_orphaned(self) -> bool:
        return self.flag is EntityFlag.ORPHANED

    def references(self) -> tuple[tuple[str, str], ...]:
        return (("plan_item", self.plan_item),)

    def evolve(self, **changes: object) -> Task:
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "title": self.title,
            "plan_item": self.plan_item,
            "status": self.status.value,
        }
        if self.tests:
            payload["tests"] = list(self.tests)
        if self.flag is not None:
            payload["flag"] = self.flag.value
        if self.source_digest is not None:
            payload["source_digest"] = self.source_digest
        if self.override:
            payload["override"] = dict(self.override)
        return payload


@dataclass(frozen=True, slots=True)
class TaskDocument:
    tasks: tuple[Task, ...] = ()
    path: str = "<memory>"
    version: int = TASKS_SCHEMA_VERSION

    @property
    def kind(self) -> DocumentKind:
        return DocumentKind.TASKS

    @property
    def entities(self) -> tuple[Task, ...]:
        return self.tasks

    def identifiers(self) -> tuple[str, ...]:
        return tuple(task.id for task in self.tasks)

    def task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def for_plan_item(self, item_id: str) -> tuple[Task, ...]:
        return tuple(task for task in self.tasks if task.plan_item == item_id)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "version": self.version,
            "tasks": [task.to_dict() for task in self.tasks],
        }


Document = SpecificationDocument | PlanDocument | TaskDocument
Entity = Requirement | UserScenario | PlanItem | Task


def project_lifecycle(
    spec: SpecificationDocument,
    plan: PlanDocument | None = None,
    tasks: TaskDocument | None = None,
) -> LifecycleState:
    """Compute the lifecycle state implied by the documents present."""

    if tasks is not None:
        return LifecycleState.TASKED
    if plan is not None:
        return LifecycleState.PLANNED
    if spec.pending_clarifications():
        return LifecycleState.DRAFT
    return LifecycleState.READY


def promote_to_ready(spec: SpecificationDocument) -> SpecificationDocument:
    """Return ``spec`` marked ready, or raise when clarifications are pending."""

    pending = spec.pending_clarifications()
    if pending:
        raise PromotionBlockedError(pending)
    return replace(spec, status=SpecStatus.READY)


__all__ = [
    "Document",
    "DocumentKind",
    "Entity",
    "EntityFlag",
    "JSONScalar",
    "JSONValue",
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
    "override_is_authored",
    "project_lifecycle",
    "promote_to_ready",
]
