"""
spec-trace — document parser/validator

File: src/spec_trace/spec_ingestion/parser.py

Purpose
- Parses raw ``spec.yml`` / ``plan.yml`` / ``tasks.yml`` text into the typed
  document model.

What should be included in this file
- YAML loading via ``yaml.safe_load`` (documents are data, never code).
- Schema enforcement: required fields, types, identifier pattern and category,
  duplicate identifiers, backwards references.
- Clarification marker detection, reported as collected warnings.

Functional requirements
- Must fail with actionable ``SchemaError`` (path, dotted location, hint).
- Must be pure: identical text yields an identical document.
"""

from __future__ import annotations

import datetime as dt
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Final, TypeVar, cast

import yaml

from spec_trace.constants import (
    DEFAULT_CLARIFICATION_MARKER,
    PLAN_SCHEMA_VERSION,
    TASKS_SCHEMA_VERSION,
)
from spec_trace.domain import ids as domain_ids
from spec_trace.domain.ids import IdCategory
from spec_trace.domain.models import (
    Document,
    DocumentKind,
    EntityFlag,
    JSONValue,
    PlanDocument,
    PlanItem,
    Requirement,
    SpecificationDocument,
    SpecStatus,
    Task,
    TaskDocument,
    TaskStatus,
    UserScenario,
)
from spec_trace.errors import ClarificationPending, DuplicateIdentifierError, SchemaError

_REQUIREMENT_FIELDS: Final[frozenset[str]] = frozenset(
    {"id", "description", "acceptance_criteria", "depends_on"}
)
_SCENARIO_FIELDS: Final[frozenset[str]] = frozenset(
    {"id", "description", "acceptance_criteria", "requirements"}
)
_SPEC_FIELDS: Final[frozenset[str]] = frozenset(
    {"name", "description", "status", "requirements", "user_scenarios"}
)
_PLAN_ITEM_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "title",
        "implements",
        "rules",
        "acceptance_criteria",
        "depends_on",
        "flag",
        "source_digest",
        "override",
    }
)
_TASK_FIELDS: Final[frozenset[str]] = frozenset(
    {"id", "title", "plan_item", "status", "tests", "flag", "source_digest", "override"}
)
_DIGEST_RE: Final[re.Pattern[str]] = re.compile(r"^[0-9a-f]{8,64}$")
_EXCERPT_LENGTH: Final[int] = 60

_E = TypeVar("_E", SpecStatus, TaskStatus, EntityFlag)


@dataclass(frozen=True, slots=True)
class ParseResult:
    """Parsed document plus the non-fatal warnings collected on the way."""

    document: Document
    warnings: tuple[ClarificationPending, ...] = ()


@dataclass(slots=True)
class _Context:
    path: str
    marker: str
    seen: dict[str, str] = field(default_factory=dict)
    warnings: list[ClarificationPending] = field(default_factory=list)

    def fail(self, location: str, message: str, hint: str = "", subject: str | None = None) -> SchemaError:
        return SchemaError(
            path=self.path, location=location, message=message, hint=hint, subject=subject
        )

    def claim(self, identifier: str, location: str) -> None:
        first = self.seen.get(identifier)
        if first is not None:
            raise DuplicateIdentifierError(
                path=self.path, location=location, identifier=identifier, other=first
            )
        self.seen[identifier] = location


def parse_document(
    text: str,
    kind: DocumentKind | str,
    *,
    path: str = "<memory>",
    marker: str = DEFAULT_CLARIFICATION_MARKER,
) -> ParseResult:
    """Parse ``text`` as a document of ``kind``; raise ``SchemaError`` when malformed."""

    resolved_kind = DocumentKind(kind)
    if resolved_kind is DocumentKind.SPECIFICATION:
        return parse_specification(text, path=path, marker=marker)
    if resolved_kind is DocumentKind.PLAN:
        return parse_plan(text, path=path)
    return parse_tasks(text, path=path)


def parse_specification(
    text: str,
    *,
    path: str = "<memory>",
    marker: str = DEFAULT_CLARIFICATION_MARKER,
) -> ParseResult:
    ctx = _Context(path=path, marker=_validate_marker(marker))
    root = _load_root(text, ctx)
    _reject_unknown(root, _SPEC_FIELDS, "<root>", ctx)

    name = _required_str(root, "name", "<root>", ctx)
    description = _optional_str(root.get("description"), "description", ctx)
    status = _parse_enum(root.get("status", SpecStatus.DRAFT.value), SpecStatus, "status", ctx)

    requirements_raw = root.get("requirements")
    if requirements_raw is None:
        raise ctx.fail("requirements", "missing required field", "Add a 'requirements' mapping")
    requirements = _as_mapping(requirements_raw, "requirements", ctx)
    _reject_unknown(requirements, frozenset({"functional", "non_functional"}), "requirements", ctx)

    functional = tuple(
        _parse_requirement(item, f"requirements.functional[{index}]", IdCategory.FUNCTIONAL, ctx)
        for index, item in enumerate(
            _as_list(requirements.get("functional", []), "requirements.functional", ctx)
        )
    )
    non_functional = tuple(
        _parse_requirement(
            item, f"requirements.non_functional[{index}]", IdCategory.NON_FUNCTIONAL, ctx
        )
        for index, item in enumerate(
            _as_list(requirements.get("non_functional", []), "requirements.non_functional", ctx)
        )
    )
    scenarios = tuple(
        _parse_scenario(item, f"user_scenarios[{index}]", ctx)
        for index, item in enumerate(
            _as_list(root.get("user_scenarios", []), "user_scenarios", ctx)
        )
    )

    document = SpecificationDocument(
        name=name,
        description=description,
        functional=functional,
        non_functional=non_functional,
        user_scenarios=scenarios,
        status=status,
        path=path,
    )
    return ParseResult(document=document, warnings=tuple(ctx.warnings))


def parse_plan(text: str, *, path: str = "<memory>") -> ParseResult:
    ctx = _Context(path=path, marker=DEFAULT_CLARIFICATION_MARKER)
    root = _load_root(text, ctx)
    _reject_unknown(root, frozenset({"version", "plan_items"}), "<root>", ctx)
    version = _parse_version(root.get("version", PLAN_SCHEMA_VERSION), PLAN_SCHEMA_VERSION, ctx)
    if "plan_items" not in root:
        raise ctx.fail("plan_items", "missing required field", "Add a 'plan_items' list")
    items = tuple(
        _parse_plan_item(item, f"plan_items[{index}]", ctx)
        for index, item in enumerate(_as_list(root["plan_items"], "plan_items", ctx))
    )
    return ParseResult(document=PlanDocument(items=items, path=path, version=version))


def parse_tasks(text: str, *, path: str = "<memory>") -> ParseResult:
    ctx = _Context(path=path, marker=DEFAULT_CLARIFICATION_MARKER)
    root = _load_root(text, ctx)
    _reject_unknown(root, frozenset({"version", "tasks"}), "<root>", ctx)
    version = _parse_version(root.get("version", TASKS_SCHEMA_VERSION), TASKS_SCHEMA_VERSION, ctx)
    if "tasks" not in root:
        raise ctx.fail("tasks", "missing required field", "Add a 'tasks' list")
    tasks = tuple(
        _parse_task(item, f"tasks[{index}]", ctx)
        for index, item in enumerate(_as_list(root["tasks"], "tasks", ctx))
    )
    return ParseResult(document=TaskDocument(tasks=tasks, path=path, version=version))


def combine_specifications(documents: Sequence[SpecificationDocument]) -> SpecificationDocument:
    """
    Merge the spec fragments of one project into a single document.

    The first document supplies name, description, status and path; entities
    are concatenated in fragment order. A repeated identifier raises
    ``DuplicateIdentifierError``.
    """

    if not documents:
        raise ValueError("combine_specifications requires at least one document")
    primary = documents[0]
    if len(documents) == 1:
        return primary

    owners: dict[str, str] = {}
    for document in documents:
        for identifier in document.identifiers():
            first = owners.get(identifier)
            if first is not None:
                raise DuplicateIdentifierError(
                    path=document.path, location="<root>", identifier=identifier, other=first
                )
            owners[identifier] = document.path

    return SpecificationDocument(
        name=primary.name,
        description=primary.description,
        functional=tuple(item for doc in documents for item in doc.functional),
        non_functional=tuple(item for doc in documents for item in doc.non_functional),
        user_scenarios=tuple(item for doc in documents for item in doc.user_scenarios),
        status=primary.status,
        path=primary.path,
    )


def contains_marker(text: str, marker: str = DEFAULT_CLARIFICATION_MARKER) -> bool:
    return marker in text


# ---------------------------------------------------------------------------
# Entity parsers
# ---------------------------------------------------------------------------


def _parse_requirement(
    raw: object, location: str, category: IdCategory, ctx: _Context
) -> Requirement:
    data = _as_mapping(raw, location, ctx)
    _reject_unknown(data, _REQUIREMENT_FIELDS, location, ctx)
    req_id = _parse_id(data, location, frozenset({category}), ctx)
    description = _required_str(data, "description", location, ctx)
    criteria = _string_tuple(data.get("acceptance_criteria"), f"{location}.acceptance_criteria", ctx)
    depends_on = _id_tuple(
        data.get("depends_on"),
        f"{location}.depends_on",
        domain_ids.REQUIREMENT_CATEGORIES,
        ctx,
    )
    if req_id in depends_on:
        raise ctx.fail(f"{location}.depends_on", f"{req_id} depends on itself", subject=req_id)
    clarification = _detect_clarification(req_id, (description, *criteria), ctx)
    return Requirement(
        id=req_id,
        description=description,
        acceptance_criteria=criteria,
        depends_on=depends_on,
        clarification=clarification,
    )


def _parse_scenario(raw: object, location: str, ctx: _Context) -> UserScenario:
    data = _as_mapping(raw, location, ctx)
    _reject_unknown(data, _SCENARIO_FIELDS, location, ctx)
    scenario_id = _parse_id(data, location, frozenset({IdCategory.USER_SCENARIO}), ctx)
    description = _required_str(data, "description", location, ctx)
    criteria = _string_tuple(data.get("acceptance_criteria"), f"{location}.acceptance_criteria", ctx)
    requirements = _id_tuple(
        data.get("requirements"),
        f"{location}.requirements",
        domain_ids.REQUIREMENT_CATEGORIES,
        ctx,
    )
    clarification = _detect_clarification(scenario_id, (description, *criteria), ctx)
    return UserScenario(
        id=scenario_id,
        description=description,
        acceptance_criteria=criteria,
        requirements=requirements,
        clarification=clarification,
    )


def _parse_plan_item(raw: object, location: str, ctx: _Context) -> PlanItem:
    data = _as_mapping(raw, location, ctx)
    _reject_unknown(data, _PLAN_ITEM_FIELDS, location, ctx)
    item_id = _parse_id(data, location, frozenset({IdCategory.PLAN_ITEM}), ctx)

    if "implements" not in data:
        raise ctx.fail(f"{location}.implements", "missing required field", subject=item_id)
    implements = _id_tuple(
        data["implements"],
        f"{location}.implements",
        domain_ids.SPECIFICATION_CATEGORIES,
        ctx,
    )
    if not implements:
        raise ctx.fail(
            f"{location}.implements",
            "plan item must implement at least one requirement",
            subject=item_id,
        )
    if "rules" not in data:
        raise ctx.fail(
            f"{location}.rules",
            "missing required field",
            "Use 'rules: []' when no constitution rule applies",
            subject=item_id,
        )
    rules = _rule_tuple(data["rules"], f"{location}.rules", ctx)
    depends_on = _id_tuple(
        data.get("depends_on"), f"{location}.depends_on", frozenset({IdCategory.PLAN_ITEM}), ctx
    )
    if item_id in depends_on:
        raise ctx.fail(f"{location}.depends_on", f"{item_id} depends on itself", subject=item_id)

    return PlanItem(
        id=item_id,
        title=_optional_str(data.get("title"), f"{location}.title", ctx),
        implements=implements,
        rules=rules,
        acceptance_criteria=_string_tuple(
            data.get("acceptance_criteria"), f"{location}.acceptance_criteria", ctx
        ),
        depends_on=depends_on,
        flag=_optional_flag(data.get("flag"), f"{location}.flag", ctx),
        source_digest=_optional_digest(data.get("source_digest"), f"{location}.source_digest", ctx),
        override=_override(data.get("override"), f"{location}.override", ctx),
    )


def _parse_task(raw: object, location: str, ctx: _Context) -> Task:
    data = _as_mapping(raw, location, ctx)
    _reject_unknown(data, _TASK_FIELDS, location, ctx)
    task_id = _parse_id(data, location, frozenset({IdCategory.TASK}), ctx)

    plan_item_raw = data.get("plan_item")
    if plan_item_raw is None:
        raise ctx.fail(f"{location}.plan_item", "missing required field", subject=task_id)
    plan_item = _as_identifier(
        plan_item_raw, f"{location}.plan_item", frozenset({IdCategory.PLAN_ITEM}), ctx
    )
    if "status" not in data:
        raise ctx.fail(
            f"{location}.status",
            "missing required field",
            "Use one of: pending, in_progress, done",
            subject=task_id,
        )
    status = _parse_enum(data["status"], TaskStatus, f"{location}.status", ctx)
    tests = _id_tuple(data.get("tests"), f"{location}.tests", frozenset({IdCategory.TEST}), ctx)

    return Task(
        id=task_id,
        title=_optional_str(data.get("title"), f"{location}.title", ctx),
        plan_item=plan_item,
        status=status,
        tests=tests,
        flag=_optional_flag(data.get("flag"), f"{location}.flag", ctx),
        source_digest=_optional_digest(data.get("source_digest"), f"{location}.source_digest", ctx),
        override=_override(data.get("override"), f"{location}.override", ctx),
    )


def _detect_clarification(subject: str, texts: Iterable[str], ctx: _Context) -> bool:
    for text in texts:
        position = text.find(ctx.marker)
        if position < 0:
            continue
        ctx.warnings.append(
            ClarificationPending(subject, path=ctx.path, excerpt=_excerpt(text, position))
        )
        return True
    return False


def _excerpt(text: str, position: int) -> str:
    closing = text.find("]", position)
    end = closing + 1 if closing >= 0 else len(text)
    end = min(end, position + _EXCERPT_LENGTH)
    return " ".join(text[position:end].split())


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def _load_root(text: str, ctx: _Context) -> dict[str, object]:
    try:
        loaded = cast("object", yaml.safe_load(text))
    except yaml.YAMLError as exc:
        line = ""
        hint = str(exc).splitlines()[0]
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            line = f" at line {mark.line + 1}"
            source = text.splitlines()
            if mark.line < len(source) and ctx.marker in source[mark.line]:
                hint = (
                    f"{hint}; quote text containing '{ctx.marker}'"
                    " so its colon is not read as a mapping"
                )
        raise ctx.fail("<root>", f"invalid YAML{line}", hint) from exc
    if loaded is None:
        raise ctx.fail("<root>", "document is empty")
    return _as_mapping(loaded, "<root>", ctx)


def _as_mapping(value: object, location: str, ctx: _Context) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise ctx.fail(location, f"expected a mapping, got {_type_name(value)}")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ctx.fail(location, f"mapping keys must be strings, got {_type_name(key)}")
        parsed[key] = item
    return parsed


def _as_list(value: object, location: str, ctx: _Context) -> list[object]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ctx.fail(location, f"expected a list, got {_type_name(value)}")
    return value


def _reject_unknown(
    data: Mapping[str, object], allowed: frozenset[str], location: str, ctx: _Context
) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ctx.fail(
            location,
            f"unexpected fields: {unknown}",
            f"allowed fields: {sorted(allowed)}",
        )


def _required_str(data: Mapping[str, object], key: str, location: str, ctx: _Context) -> str:
    field_location = key if location == "<root>" else f"{location}.{key}"
    if key not in data or data[key] is None:
        raise ctx.fail(field_location, "missing required field")
    value = data[key]
    if not isinstance(value, str):
        raise ctx.fail(field_location, f"expected a string, got {_type_name(value)}")
    normalized = value.strip()
    if not normalized:
        raise ctx.fail(field_location, "must not be empty")
    return normalized


def _optional_str(value: object, location: str, ctx: _Context) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ctx.fail(location, f"expected a string, got {_type_name(value)}")
    return value.strip()


def _string_tuple(value: object, location: str, ctx: _Context) -> tuple[str, ...]:
    items: list[str] = []
    for index, item in enumerate(_as_list(value, location, ctx)):
        if not isinstance(item, str):
            raise ctx.fail(f"{location}[{index}]", f"expected a string, got {_type_name(item)}")
        normalized = item.strip()
        if not normalized:
            raise ctx.fail(f"{location}[{index}]", "must not be empty")
        items.append(normalized)
    return tuple(items)


def _parse_id(
    data: Mapping[str, object],
    location: str,
    categories: frozenset[IdCategory],
    ctx: _Context,
) -> str:
    if "id" not in data:
        raise ctx.fail(f"{location}.id", "missing required field")
    identifier = _as_identifier(data["id"], f"{location}.id", categories, ctx)
    ctx.claim(identifier, location)
    return identifier


def _as_identifier(
    value: object,
    location: str,
    categories: frozenset[IdCategory],
    ctx: _Context,
) -> str:
    if not isinstance(value, str):
        raise ctx.fail(location, f"identifier must be a string, got {_type_name(value)}")
    text = value.strip()
    try:
        parsed = domain_ids.parse_identifier(text)
    except ValueError as exc:
        raise ctx.fail(location, str(exc), domain_ids.ID_PATTERN_DESCRIPTION) from exc
    if parsed.category not in categories:
        expected = ", ".join(sorted(category.value for category in categories))
        raise ctx.fail(
            location,
            f"{text} is a {parsed.category.value} identifier; expected {expected}",
            "References may only point upstream (requirement <- plan item <- task)",
            subject=text,
        )
    return text


def _id_tuple(
    value: object,
    location: str,
    categories: frozenset[IdCategory],
    ctx: _Context,
) -> tuple[str, ...]:
    ordered: list[str] = []
    seen: set[str] = set()
    for index, item in enumerate(_as_list(value, location, ctx)):
        identifier = _as_identifier(item, f"{location}[{index}]", categories, ctx)
        if identifier in seen:
            continue
        seen.add(identifier)
        ordered.append(identifier)
    return tuple(ordered)


def _rule_tuple(value: object, location: str, ctx: _Context) -> tuple[str, ...]:
    ordered: list[str] = []
    for index, item in enumerate(_as_list(value, location, ctx)):
        try:
            domain_ids.validate_rule_id(cast("str", item))
        except ValueError as exc:
            raise ctx.fail(f"{location}[{index}]", str(exc)) from exc
        if item not in ordered:
            ordered.append(cast("str", item))
    return tuple(ordered)


def _parse_enum(
    value: object, enum_type: type[_E], location: str, ctx: _Context
) -> _E:
    allowed = [member.value for member in enum_type]
    if not isinstance(value, str):
        raise ctx.fail(location, f"expected one of {allowed}, got {_type_name(value)}")
    try:
        return enum_type(value.strip().lower())
    except ValueError as exc:
        raise ctx.fail(location, f"unknown value {value!r}", f"use one of {allowed}") from exc


def _optional_flag(value: object, location: str, ctx: _Context) -> EntityFlag | None:
    if value is None:
        return None
    return _parse_enum(value, EntityFlag, location, ctx)


def _optional_digest(value: object, location: str, ctx: _Context) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or _DIGEST_RE.match(value) is None:
        raise ctx.fail(location, "source_digest must be a lowercase hex string")
    return value


def _parse_version(value: object, supported: int, ctx: _Context) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ctx.fail("version", f"expected an integer, got {_type_name(value)}")
    if not 1 <= value <= supported:
        raise ctx.fail("version", f"unsupported schema version {value}", f"supported: 1..{supported}")
    return value


def _override(value: object, location: str, ctx: _Context) -> dict[str, JSONValue]:
    if value is None:
        return {}
    mapping = _as_mapping(value, location, ctx)
    return {key: _as_json_value(item, f"{location}.{key}", ctx) for key, item in mapping.items()}


def _as_json_value(value: object, location: str, ctx: _Context) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ctx.fail(location, "must contain only finite numbers")
        return value
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, list):
        return [_as_json_value(item, f"{location}[{index}]", ctx) for index, item in enumerate(value)]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ctx.fail(location, "override keys must be strings")
            out[key] = _as_json_value(item, f"{location}.{key}", ctx)
        return out
    raise ctx.fail(location, f"unsupported value type {_type_name(value)}")


def _validate_marker(marker: str) -> str:
    if not isinstance(marker, str) or not marker.strip():
        raise ValueError("clarification marker must be a non-empty string")
    return marker


def _type_name(value: object) -> str:
    return "null" if value is None else type(value).__name__


__all__ = [
    "ParseResult",
    "combine_specifications",
    "contains_marker",
    "parse_document",
    "parse_plan",
    "parse_specification",
    "parse_tasks",
]
