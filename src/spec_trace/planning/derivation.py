"""
spec-trace — derivation engine

File: src/spec_trace/planning/derivation.py

Purpose
- Derives plan items from requirements and tasks from plan items, merging the
  fresh derivation into the previously persisted documents.

What should be included in this file
- Pure ``draft_*`` functions computing fresh downstream content.
- Pure ``merge_*`` functions implementing the confirm-before-delete policy:
  unchanged items are preserved verbatim, removed upstream flags items
  ``orphaned``, authored items whose upstream changed become conflicts.
- Conflict resolution and a read-only staleness report.

Functional requirements
- Deterministic: identical inputs produce identical documents and change logs.
- Never deletes an entity; never overwrites authored content silently.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final, Literal

from spec_trace.constants import MAX_TITLE_LENGTH
from spec_trace.domain.ids import PLAN_ITEM_PREFIX, TASK_PREFIX, next_identifier
from spec_trace.domain.models import (
    EntityFlag,
    JSONValue,
    PlanDocument,
    PlanItem,
    Requirement,
    SpecificationDocument,
    Task,
    TaskDocument,
    UserScenario,
)
from spec_trace.errors import DerivationConflict, OrphanedItemError
from spec_trace.utils.hashing import content_digest

_TITLE_ELLIPSIS: Final[str] = "..."


class ChangeAction(StrEnum):
    CREATED = "created"
    REGENERATED = "regenerated"
    ORPHANED = "orphaned"
    PRESERVED = "preserved"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class DerivationChange:
    action: ChangeAction
    subject: str
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"action": self.action.value, "subject": self.subject, "detail": self.detail}


@dataclass(frozen=True, slots=True)
class PlanDraftEntry:
    """Freshly derived content for a plan item covering ``upstream``."""

    upstream: tuple[str, ...]
    title: str
    acceptance_criteria: tuple[str, ...]
    needs_elaboration: bool
    source_digest: str


@dataclass(frozen=True, slots=True)
class PlanDraft:
    """One entry per requirement, in specification order."""

    entries: tuple[PlanDraftEntry, ...]
    upstream: Mapping[str, Requirement | UserScenario]

    def derive_for(self, implements: Sequence[str]) -> PlanDraftEntry:
        """Fresh content for a plan item covering every live id in ``implements``."""
        live = tuple(item for item in implements if item in self.upstream)
        if not live:
            raise ValueError(f"none of {list(implements)} exist in the specification")
        entities = [self.upstream[item] for item in live]
        criteria: list[str] = []
        for entity in entities:
            for criterion in entity.acceptance_criteria:
                if criterion not in criteria:
                    criteria.append(criterion)
        return PlanDraftEntry(
            upstream=live,
            title=_title(" / ".join(_first_line(entity.description) for entity in entities)),
            acceptance_criteria=tuple(criteria),
            needs_elaboration=any(entity.clarification for entity in entities),
            source_digest=content_digest([entity.to_dict() for entity in entities]),
        )


@dataclass(frozen=True, slots=True)
class PlanDerivation:
    plan: PlanDocument
    changes: tuple[DerivationChange, ...] = ()
    conflicts: tuple[DerivationConflict, ...] = ()

    def changed(self, action: ChangeAction) -> tuple[str, ...]:
        return tuple(change.subject for change in self.changes if change.action is action)

    def summary(self) -> dict[str, int]:
        return {action.value: len(self.changed(action)) for action in ChangeAction}


@dataclass(frozen=True, slots=True)
class TaskDraftEntry:
    plan_item: str
    title: str
    source_digest: str


@dataclass(frozen=True, slots=True)
class TaskDraft:
    """Fresh tasks grouped by live plan item, in plan order."""

    entries: Mapping[str, tuple[TaskDraftEntry, ...]]
    orphaned_items: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True, slots=True)
class TaskDerivation:
    tasks: TaskDocument
    changes: tuple[DerivationChange, ...] = ()
    conflicts: tuple[DerivationConflict, ...] = ()

    def changed(self, action: ChangeAction) -> tuple[str, ...]:
        return tuple(change.subject for change in self.changes if change.action is action)

    def summary(self) -> dict[str, int]:
        return {action.value: len(self.changed(action)) for action in ChangeAction}


@dataclass(frozen=True, slots=True)
class RegenerationStatus:
    """What a plan derivation would change, without merging."""

    stale: tuple[str, ...] = ()
    uncovered: tuple[str, ...] = ()
    orphan_candidates: tuple[str, ...] = ()

    @property
    def is_current(self) -> bool:
        return not (self.stale or self.uncovered or self.orphan_candidates)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "stale": list(self.stale),
            "uncovered": list(self.uncovered),
            "orphan_candidates": list(self.orphan_candidates),
        }


# ---------------------------------------------------------------------------
# Plan derivation
# ---------------------------------------------------------------------------


def draft_plan(spec: SpecificationDocument) -> PlanDraft:
    upstream: dict[str, Requirement | UserScenario] = {entity.id: entity for entity in spec.entities}
    draft = PlanDraft(entries=(), upstream=upstream)
    entries = tuple(draft.derive_for((requirement.id,)) for requirement in spec.requirements)
    return PlanDraft(entries=entries, upstream=upstream)


def merge_plan(previous: PlanDocument | None, draft: PlanDraft) -> PlanDerivation:
    """
    Merge ``draft`` into ``previous``.

    Existing items keep their relative order; stubs for uncovered requirements
    are appended in specification order.
    """

    incremental = previous is not None
    prior_items = previous.items if previous is not None else ()
    items: list[PlanItem] = []
    changes: list[DerivationChange] = []
    conflicts: list[DerivationConflict] = []
    covered: set[str] = set()

    for item in prior_items:
        live = tuple(target for target in item.implements if target in draft.upstream)
        if not live:
            if item.is_orphaned:
                items.append(item)
                changes.append(DerivationChange(ChangeAction.PRESERVED, item.id, "still orphaned"))
            else:
                items.append(item.evolve(flag=EntityFlag.ORPHANED))
                changes.append(
                    DerivationChange(
                        ChangeAction.ORPHANED,
                        item.id,
                        f"upstream removed: {', '.join(item.implements)}",
                    )
                )
            continue

        covered.update(live)
        fresh = draft.derive_for(live)
        if (
            live == item.implements
            and fresh.source_digest == item.source_digest
            and not item.is_orphaned
        ):
            items.append(item)
            changes.append(DerivationChange(ChangeAction.PRESERVED, item.id))
            continue

        if item.is_authored:
            # Authored content is kept; only links to removed requirements are pruned.
            kept = item.evolve(
                implements=live,
                flag=None if item.is_orphaned else item.flag,
            )
            items.append(kept)
            reason = "upstream changed but the item carries author overrides"
            conflicts.append(DerivationConflict(item.id, upstream=live, reason=reason))
            changes.append(DerivationChange(ChangeAction.CONFLICT, item.id, reason))
            continue

        items.append(_regenerate_item(item, fresh))
        changes.append(
            DerivationChange(ChangeAction.REGENERATED, item.id, f"upstream: {', '.join(live)}")
        )

    existing_ids = [item.id for item in items]
    for entry in draft.entries:
        requirement_id = entry.upstream[0]
        if requirement_id in covered:
            continue
        item_id = next_identifier(PLAN_ITEM_PREFIX, existing_ids)
        existing_ids.append(item_id)
        flagged = incremental or entry.needs_elaboration
        items.append(
            PlanItem(
                id=item_id,
                title=entry.title,
                implements=entry.upstream,
                rules=(),
                acceptance_criteria=entry.acceptance_criteria,
                flag=EntityFlag.NEEDS_ELABORATION if flagged else None,
                source_digest=entry.source_digest,
            )
        )
        covered.add(requirement_id)
        changes.append(DerivationChange(ChangeAction.CREATED, item_id, f"implements {requirement_id}"))

    merged = PlanDocument(
        items=tuple(items),
        path=previous.path if previous is not None else "<memory>",
    )
    return PlanDerivation(plan=merged, changes=tuple(changes), conflicts=tuple(conflicts))


def derive_plan(
    spec: SpecificationDocument, existing_plan: PlanDocument | None = None
) -> PlanDerivation:
    return merge_plan(existing_plan, draft_plan(spec))


def resolve_conflict(
    plan: PlanDocument,
    item_id: str,
    spec: SpecificationDocument,
    keep: Literal["author", "upstream"] = "author",
) -> PlanDocument:
    """
    Re-stamp a conflicting plan item so the next derivation treats it as current.

    ``author`` keeps the override and records the current upstream digest;
    ``upstream`` discards the override and regenerates the item. An item whose
    upstream is gone is kept as is for ``author`` and raises
    ``OrphanedItemError`` for ``upstream``.
    """

    if keep not in ("author", "upstream"):
        raise ValueError(f"keep must be 'author' or 'upstream', got {keep!r}")
    item = plan.item(item_id)
    if item is None:
        raise KeyError(f"Unknown plan item: {item_id}")
    draft = draft_plan(spec)
    if not any(target in draft.upstream for target in item.implements):
        if keep == "upstream":
            raise OrphanedItemError(item_id, item.implements)
        return plan
    fresh = draft.derive_for(item.implements)

    if keep == "author":
        resolved = item.evolve(
            implements=fresh.upstream,
            source_digest=fresh.source_digest,
            flag=None if item.is_orphaned else item.flag,
        )
    else:
        resolved = _regenerate_item(item.evolve(override={}), fresh)

    return PlanDocument(
        items=tuple(resolved if candidate.id == item_id else candidate for candidate in plan.items),
        path=plan.path,
        version=plan.version,
    )


def plan_regeneration_status(
    spec: SpecificationDocument, plan: PlanDocument | None
) -> RegenerationStatus:
    draft = draft_plan(spec)
    stale: list[str] = []
    orphan_candidates: list[str] = []
    covered: set[str] = set()
    for item in plan.items if plan is not None else ():
        live = tuple(target for target in item.implements if target in draft.upstream)
        if not live:
            if not item.is_orphaned:
                orphan_candidates.append(item.id)
            continue
        covered.update(live)
        fresh = draft.derive_for(live)
        if live != item.implements or fresh.source_digest != item.source_digest:
            stale.append(item.id)
    uncovered = [entry.upstream[0] for entry in draft.entries if entry.upstream[0] not in covered]
    return RegenerationStatus(
        stale=tuple(stale),
        uncovered=tuple(uncovered),
        orphan_candidates=tuple(orphan_candidates),
    )


def _regenerate_item(item: PlanItem, fresh: PlanDraftEntry) -> PlanItem:
    return item.evolve(
        title=fresh.title,
        implements=fresh.upstream,
        acceptance_criteria=fresh.acceptance_criteria,
        source_digest=fresh.source_digest,
        flag=EntityFlag.NEEDS_ELABORATION if fresh.needs_elaboration else None,
    )


# ---------------------------------------------------------------------------
# Task derivation
# ---------------------------------------------------------------------------


def draft_tasks(plan: PlanDocument) -> TaskDraft:
    entries: dict[str, tuple[TaskDraftEntry, ...]] = {}
    orphaned: set[str] = set()
    for item in plan.items:
        if item.is_orphaned:
            orphaned.add(item.id)
            continue
        entries[item.id] = _tasks_for_item(item)
    return TaskDraft(entries=entries, orphaned_items=frozenset(orphaned))


def merge_tasks(previous: TaskDocument | None, draft: TaskDraft) -> TaskDerivation:
    """
    Merge fresh tasks into ``previous`` per plan item.

    Live tasks of a plan item are paired with the fresh list by digest, then by
    title, then by position for whatever is left.
    Unauthored tasks are regenerated in place; authored tasks whose title would
    change become conflicts; unpaired surplus tasks are flagged ``orphaned``.
    """

    prior_tasks = previous.tasks if previous is not None else ()
    changes: list[DerivationChange] = []
    conflicts: list[DerivationConflict] = []
    replacements: dict[str, Task] = {}

    grouped: dict[str, list[Task]] = {}
    for task in prior_tasks:
        if task.plan_item not in draft.entries:
            if task.is_orphaned:
                changes.append(DerivationChange(ChangeAction.PRESERVED, task.id, "still orphaned"))
            else:
                replacements[task.id] = task.evolve(flag=EntityFlag.ORPHANED)
                changes.append(
                    DerivationChange(
                        ChangeAction.ORPHANED, task.id, f"plan item {task.plan_item} is gone or orphaned"
                    )
                )
            continue
        if task.is_orphaned:
            changes.append(DerivationChange(ChangeAction.PRESERVED, task.id, "still orphaned"))
            continue
        grouped.setdefault(task.plan_item, []).append(task)

    appended: list[Task] = []
    existing_ids = [task.id for task in prior_tasks]
    for item_id, fresh_entries in draft.entries.items():
        pairs, surplus, unmatched = _pair_tasks(grouped.get(item_id, []), fresh_entries)
        for task, fresh in pairs:
            replacements[task.id] = _merge_task(task, fresh, changes, conflicts)
        for task in surplus:
            replacements[task.id] = task.evolve(flag=EntityFlag.ORPHANED)
            changes.append(
                DerivationChange(ChangeAction.ORPHANED, task.id, f"no longer derived from {item_id}")
            )
        for fresh in unmatched:
            task_id = next_identifier(TASK_PREFIX, existing_ids)
            existing_ids.append(task_id)
            appended.append(
                Task(
                    id=task_id,
                    title=fresh.title,
                    plan_item=item_id,
                    source_digest=fresh.source_digest,
                )
            )
            changes.append(DerivationChange(ChangeAction.CREATED, task_id, f"derived from {item_id}"))

    tasks = tuple(replacements.get(task.id, task) for task in prior_tasks) + tuple(appended)
    merged = TaskDocument(tasks=tasks, path=previous.path if previous is not None else "<memory>")
    return TaskDerivation(
        tasks=merged,
        changes=tuple(sorted(changes, key=_change_order(tasks))),
        conflicts=tuple(conflicts),
    )


def derive_tasks(plan: PlanDocument, existing_tasks: TaskDocument | None = None) -> TaskDerivation:
    return merge_tasks(existing_tasks, draft_tasks(plan))


def _pair_tasks(
    live: Sequence[Task], fresh_entries: Sequence[TaskDraftEntry]
) -> tuple[list[tuple[Task, TaskDraftEntry]], list[Task], list[TaskDraftEntry]]:
    matched: dict[int, int] = {}
    used: set[int] = set()
    for attribute in ("source_digest", "title"):
        for index, task in enumerate(live):
            if index in matched:
                continue
            for candidate, fresh in enumerate(fresh_entries):
                if candidate not in used and getattr(fresh, attribute) == getattr(task, attribute):
                    matched[index] = candidate
                    used.add(candidate)
                    break

    leftover = [candidate for candidate in range(len(fresh_entries)) if candidate not in used]
    surplus: list[Task] = []
    for index, task in enumerate(live):
        if index in matched:
            continue
        if leftover:
            matched[index] = leftover.pop(0)
        else:
            surplus.append(task)

    pairs = [(live[index], fresh_entries[matched[index]]) for index in sorted(matched)]
    return pairs, surplus, [fresh_entries[candidate] for candidate in leftover]


def _merge_task(
    task: Task,
    fresh: TaskDraftEntry,
    changes: list[DerivationChange],
    conflicts: list[DerivationConflict],
) -> Task:
    if task.source_digest == fresh.source_digest and task.title == fresh.title:
        changes.append(DerivationChange(ChangeAction.PRESERVED, task.id))
        return task
    if not task.is_authored:
        changes.append(DerivationChange(ChangeAction.REGENERATED, task.id, f"from {task.plan_item}"))
        return task.evolve(title=fresh.title, source_digest=fresh.source_digest, flag=None)
    if task.title == fresh.title:
        changes.append(
            DerivationChange(ChangeAction.REGENERATED, task.id, "digest refreshed, authored content kept")
        )
        return task.evolve(source_digest=fresh.source_digest)
    reason = f"plan item {task.plan_item} changed but the task is {task.status.value} or overridden"
    conflicts.append(DerivationConflict(task.id, upstream=(task.plan_item,), reason=reason))
    changes.append(DerivationChange(ChangeAction.CONFLICT, task.id, reason))
    return task


def _tasks_for_item(item: PlanItem) -> tuple[TaskDraftEntry, ...]:
    derived: dict[str, JSONValue] = {
        "id": item.id,
        "title": item.title,
        "implements": list(item.implements),
        "acceptance_criteria": list(item.acceptance_criteria),
    }
    if not item.acceptance_criteria:
        title = _title(f"Implement {item.title or item.id}")
        return (
            TaskDraftEntry(
                plan_item=item.id,
                title=title,
                source_digest=content_digest({"plan_item": derived, "criterion": None}),
            ),
        )
    return tuple(
        TaskDraftEntry(
            plan_item=item.id,
            title=_title(criterion),
            source_digest=content_digest({"plan_item": derived, "criterion": criterion}),
        )
        for criterion in item.acceptance_criteria
    )


def _change_order(tasks: Iterable[Task]) -> Callable[[DerivationChange], tuple[int, str]]:
    position = {task.id: index for index, task in enumerate(tasks)}
    return lambda change: (position.get(change.subject, len(position)), change.subject)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped
    return ""


def _title(text: str) -> str:
    normalized = " ".join(text.split()).rstrip(".")
    if len(normalized) <= MAX_TITLE_LENGTH:
        return normalized
    return normalized[: MAX_TITLE_LENGTH - len(_TITLE_ELLIPSIS)].rstrip() + _TITLE_ELLIPSIS


__all__ = [
    "ChangeAction",
    "DerivationChange",
    "PlanDerivation",
    "PlanDraft",
    "PlanDraftEntry",
    "RegenerationStatus",
    "TaskDerivation",
    "TaskDraft",
    "TaskDraftEntry",
    "derive_plan",
    "derive_tasks",
    "draft_plan",
    "draft_tasks",
    "merge_plan",
    "merge_tasks",
    "plan_regeneration_status",
    "resolve_conflict",
]
