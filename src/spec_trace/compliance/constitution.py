"""
spec-trace — constitution rule model and loader

File: src/spec_trace/compliance/constitution.py

Purpose
- Declarative architectural-policy rules ("constitution") evaluated against
  plan items and tasks of the reference graph.

What should be included in this file
- Immutable ``ConstitutionRule`` and ``RuleSet`` values; no global registry.
- A small predicate vocabulary compiled from YAML so new rules need no code.
- Deterministic loading of a rule file or a directory of rule files.

Functional requirements
- Malformed rule files fail with ``RuleSetError`` naming file and location.
- Predicates are pure functions of the node and the graph.
"""

from __future__ import annotations

import os
import re
import string
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Final, Protocol, cast

import yaml

from spec_trace.domain import ids as domain_ids
from spec_trace.domain.ids import IdCategory
from spec_trace.domain.models import JSONValue, PlanItem, Task
from spec_trace.errors import RuleSetError
from spec_trace.planning.reference_graph import EdgeKind, GraphNode, ReferenceGraph

PathLike = str | os.PathLike[str]

RULE_FILE_SUFFIXES: Final[tuple[str, ...]] = (".yml", ".yaml")
CHECKABLE_KINDS: Final[frozenset[IdCategory]] = frozenset({IdCategory.PLAN_ITEM, IdCategory.TASK})

_REQUIRED_RULE_FIELDS: Final[frozenset[str]] = frozenset({"id", "severity", "description", "require"})
_OPTIONAL_RULE_FIELDS: Final[frozenset[str]] = frozenset({"kinds", "when", "message"})
_ALLOWED_RULE_FIELDS: Final[frozenset[str]] = _REQUIRED_RULE_FIELDS | _OPTIONAL_RULE_FIELDS
MESSAGE_FIELDS: Final[frozenset[str]] = frozenset({"node_id", "rule_id", "description"})
_DEFAULT_MESSAGE: Final[str] = "{node_id} violates {rule_id}: {description}"


class RuleSeverity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class NodePredicate(Protocol):
    def __call__(self, node: GraphNode, graph: ReferenceGraph) -> bool: ...


# ---------------------------------------------------------------------------
# Predicate vocabulary
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Predicate:
    """Compiled declarative predicate; ``operator`` names one vocabulary entry."""

    operator: str
    argument: JSONValue = None
    operands: tuple[Predicate, ...] = ()

    def __call__(self, node: GraphNode, graph: ReferenceGraph) -> bool:
        return _OPERATORS[self.operator].evaluate(self, node, graph)

    def to_dict(self) -> dict[str, JSONValue]:
        if self.operator in ("all", "any"):
            return {self.operator: [operand.to_dict() for operand in self.operands]}
        if self.operator == "not":
            return {"not": self.operands[0].to_dict()}
        return {self.operator: self.argument}


@dataclass(frozen=True, slots=True)
class _Operator:
    compile: Callable[[object, str, str], Predicate]
    evaluate: Callable[[Predicate, GraphNode, ReferenceGraph], bool]


def node_payload(node: GraphNode) -> dict[str, JSONValue]:
    """Serialized view of a node used by field predicates."""

    payload: dict[str, JSONValue] = {"id": node.id, "kind": node.kind.value}
    if node.entity is not None:
        payload.update(node.entity.to_dict())
    return payload


def lookup_field(node: GraphNode, dotted: str) -> JSONValue:
    current: JSONValue = node_payload(node)
    for part in dotted.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _has_content(value: JSONValue) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def _field_text(value: JSONValue) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(_field_text(item) for item in value)
    if isinstance(value, dict):
        return "\n".join(_field_text(item) for item in value.values())
    return str(value)


def declared_rules(node: GraphNode, graph: ReferenceGraph) -> tuple[str, ...]:
    """Rule ids a node opts into; tasks inherit those of their plan item."""

    entity = node.entity
    if isinstance(entity, PlanItem):
        return entity.rules
    if isinstance(entity, Task) and entity.plan_item in graph:
        owner = graph.entity(entity.plan_item)
        if isinstance(owner, PlanItem):
            return owner.rules
    return ()


def _node_status(node: GraphNode) -> str | None:
    entity = node.entity
    if isinstance(entity, Task):
        return entity.status.value
    if isinstance(entity, PlanItem):
        status = entity.override.get("status")
        return status if isinstance(status, str) else None
    return None


def _eval_always(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return bool(predicate.argument)


def _eval_all(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return all(operand(node, graph) for operand in predicate.operands)


def _eval_any(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return any(operand(node, graph) for operand in predicate.operands)


def _eval_not(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return not predicate.operands[0](node, graph)


def _eval_field_present(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return _has_content(lookup_field(node, cast("str", predicate.argument)))


def _eval_field_equals(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    argument = cast("dict[str, JSONValue]", predicate.argument)
    return lookup_field(node, cast("str", argument["field"])) == argument["value"]


def _eval_field_matches(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    argument = cast("dict[str, JSONValue]", predicate.argument)
    value = lookup_field(node, cast("str", argument["field"]))
    return re.search(cast("str", argument["pattern"]), _field_text(value)) is not None


def _eval_text_contains(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    argument = cast("dict[str, JSONValue]", predicate.argument)
    field_name = argument.get("field")
    if field_name is None:
        haystack = _field_text(node_payload(node))
    else:
        haystack = _field_text(lookup_field(node, cast("str", field_name)))
    needle = cast("str", argument["text"])
    if argument.get("ignore_case", False):
        return needle.lower() in haystack.lower()
    return needle in haystack


def _eval_status_in(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return _node_status(node) in cast("list[str]", predicate.argument)


def _eval_flag_is(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    entity = node.entity
    flag = entity.flag if isinstance(entity, (PlanItem, Task)) else None
    expected = predicate.argument
    return (flag.value if flag is not None else None) == expected


def _eval_references_rule(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return cast("str", predicate.argument) in declared_rules(node, graph)


def _eval_implements_category(
    predicate: Predicate, node: GraphNode, graph: ReferenceGraph
) -> bool:
    entity = node.entity
    if not isinstance(entity, PlanItem):
        return False
    wanted = IdCategory(cast("str", predicate.argument))
    return any(domain_ids.category_of(target) is wanted for target in entity.implements)


def _count_neighbours(
    predicate: Predicate, node: GraphNode, graph: ReferenceGraph, *, upstream: bool
) -> bool:
    argument = cast("dict[str, JSONValue]", predicate.argument)
    edge_raw = argument.get("edge")
    edge = EdgeKind(cast("str", edge_raw)) if edge_raw is not None else None
    neighbours = graph.parents(node.id, edge) if upstream else graph.children(node.id, edge)
    if not argument.get("include_orphaned", False):
        neighbours = tuple(item for item in neighbours if not graph.node(item).is_orphaned)
    return len(neighbours) >= cast("int", argument["count"])


def _eval_min_children(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return _count_neighbours(predicate, node, graph, upstream=False)


def _eval_min_parents(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    return _count_neighbours(predicate, node, graph, upstream=True)


def _eval_has_tests(predicate: Predicate, node: GraphNode, graph: ReferenceGraph) -> bool:
    entity = node.entity
    if isinstance(entity, Task):
        tested = bool(entity.tests)
    elif isinstance(entity, PlanItem):
        tasks = [
            graph.entity(child)
            for child in graph.children(node.id, EdgeKind.DERIVED_FROM)
            if not graph.node(child).is_orphaned
        ]
        tested = bool(tasks) and all(isinstance(task, Task) and task.tests for task in tasks)
    else:
        tested = False
    return tested is bool(predicate.argument)


# Compilers validate arguments once at load time so evaluation never re-parses.


def _compile_bool(operator: str) -> Callable[[object, str, str], Predicate]:
    def _compile(raw: object, path: str, location: str) -> Predicate:
        if not isinstance(raw, bool):
            raise _rule_error(path, location, f"{operator} expects true or false")
        return Predicate(operator, raw)

    return _compile


def _compile_composite(operator: str) -> Callable[[object, str, str], Predicate]:
    def _compile(raw: object, path: str, location: str) -> Predicate:
        if not isinstance(raw, list) or not raw:
            raise _rule_error(path, location, f"{operator} expects a non-empty list of predicates")
        operands = tuple(
            compile_predicate(item, path=path, location=f"{location}[{index}]")
            for index, item in enumerate(raw)
        )
        return Predicate(operator, None, operands)

    return _compile


def _compile_not(raw: object, path: str, location: str) -> Predicate:
    return Predicate("not", None, (compile_predicate(raw, path=path, location=location),))


def _compile_field_name(operator: str) -> Callable[[object, str, str], Predicate]:
    def _compile(raw: object, path: str, location: str) -> Predicate:
        return Predicate(operator, _require_str(raw, path, location, "field path"))

    return _compile


def _compile_field_equals(raw: object, path: str, location: str) -> Predicate:
    argument = _require_mapping(raw, path, location, required=("field", "value"))
    _require_str(argument["field"], path, f"{location}.field", "field path")
    if isinstance(argument["value"], (dict, list)):
        raise _rule_error(path, f"{location}.value", "value must be a scalar")
    return Predicate("field_equals", cast("JSONValue", argument))


def _compile_field_matches(raw: object, path: str, location: str) -> Predicate:
    argument = _require_mapping(raw, path, location, required=("field", "pattern"))
    _require_str(argument["field"], path, f"{location}.field", "field path")
    pattern = _require_str(argument["pattern"], path, f"{location}.pattern", "regex")
    try:
        re.compile(pattern)
    except re.error as exc:
        raise _rule_error(path, f"{location}.pattern", f"invalid regex: {exc}") from exc
    return Predicate("field_matches", cast("JSONValue", argument))


def _compile_text_contains(raw: object, path: str, location: str) -> Predicate:
    if isinstance(raw, str):
        raw = {"text": raw}
    argument = _require_mapping(
        raw, path, location, required=("text",), optional=("field", "ignore_case")
    )
    _require_str(argument["text"], path, f"{location}.text", "text")
    if "field" in argument:
        _require_str(argument["field"], path, f"{location}.field", "field path")
    if not isinstance(argument.get("ignore_case", False), bool):
        raise _rule_error(path, f"{location}.ignore_case", "expects true or false")
    return Predicate("text_contains", cast("JSONValue", argument))


def _compile_status_in(raw: object, path: str, location: str) -> Predicate:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not raw or not all(isinstance(item, str) for item in raw):
        raise _rule_error(path, location, "status_in expects a list of status names")
    return Predicate("status_in", sorted(cast("list[str]", raw)))


def _compile_flag_is(raw: object, path: str, location: str) -> Predicate:
    allowed = {None, "needs_elaboration", "orphaned"}
    if raw not in allowed:
        raise _rule_error(path, location, "flag_is expects null, needs_elaboration or orphaned")
    return Predicate("flag_is", cast("JSONValue", raw))


def _compile_references_rule(raw: object, path: str, location: str) -> Predicate:
    try:
        domain_ids.validate_rule_id(cast("str", raw))
    except ValueError as exc:
        raise _rule_error(path, location, str(exc)) from exc
    return Predicate("references_rule", cast("str", raw))


def _compile_implements_category(raw: object, path: str, location: str) -> Predicate:
    allowed = sorted(category.value for category in domain_ids.SPECIFICATION_CATEGORIES)
    if raw not in allowed:
        raise _rule_error(path, location, f"implements_category expects one of {allowed}")
    return Predicate("implements_category", cast("str", raw))


def _compile_count(operator: str) -> Callable[[object, str, str], Predicate]:
    def _compile(raw: object, path: str, location: str) -> Predicate:
        if isinstance(raw, int) and not isinstance(raw, bool):
            raw = {"count": raw}
        argument = _require_mapping(
            raw, path, location, required=("count",), optional=("edge", "include_orphaned")
        )
        count = argument["count"]
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise _rule_error(path, f"{location}.count", "count must be a non-negative integer")
        edge = argument.get("edge")
        if edge is not None and edge not in {kind.value for kind in EdgeKind}:
            raise _rule_error(
                path,
                f"{location}.edge",
                f"unknown edge kind {edge!r}",
                hint=f"use one of {sorted(kind.value for kind in EdgeKind)}",
            )
        if not isinstance(argument.get("include_orphaned", False), bool):
            raise _rule_error(path, f"{location}.include_orphaned", "expects true or false")
        return Predicate(operator, cast("JSONValue", argument))

    return _compile


_OPERATORS: Final[dict[str, _Operator]] = {
    "always": _Operator(_compile_bool("always"), _eval_always),
    "all": _Operator(_compile_composite("all"), _eval_all),
    "any": _Operator(_compile_composite("any"), _eval_any),
    "not": _Operator(_compile_not, _eval_not),
    "field_present": _Operator(_compile_field_name("field_present"), _eval_field_present),
    "field_equals": _Operator(_compile_field_equals, _eval_field_equals),
    "field_matches": _Operator(_compile_field_matches, _eval_field_matches),
    "text_contains": _Operator(_compile_text_contains, _eval_text_contains),
    "status_in": _Operator(_compile_status_in, _eval_status_in),
    "flag_is": _Operator(_compile_flag_is, _eval_flag_is),
    "references_rule": _Operator(_compile_references_rule, _eval_references_rule),
    "implements_category": _Operator(_compile_implements_category, _eval_implements_category),
    "min_children": _Operator(_compile_count("min_children"), _eval_min_children),
    "min_parents": _Operator(_compile_count("min_parents"), _eval_min_parents),
    "has_tests": _Operator(_compile_bool("has_tests"), _eval_has_tests),
}

PREDICATE_OPERATORS: Final[tuple[str, ...]] = tuple(sorted(_OPERATORS))


def compile_predicate(raw: object, *, path: str = "<memory>", location: str = "predicate") -> Predicate:
    """Compile a single-key mapping such as ``{"min_children": 1}``."""

    if not isinstance(raw, Mapping) or len(raw) != 1:
        raise _rule_error(
            path,
            location,
            "a predicate must be a mapping with exactly one operator key",
            hint=f"operators: {', '.join(PREDICATE_OPERATORS)}",
        )
    ((operator, argument),) = raw.items()
    spec = _OPERATORS.get(operator) if isinstance(operator, str) else None
    if spec is None:
        raise _rule_error(
            path,
            location,
            f"unknown predicate {operator!r}",
            hint=f"operators: {', '.join(PREDICATE_OPERATORS)}",
        )
    return spec.compile(argument, path, f"{location}.{operator}")


# ---------------------------------------------------------------------------
# Rules and rule sets
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConstitutionRule:
    """One architectural-policy rule."""

    id: str
    severity: RuleSeverity
    description: str
    require: NodePredicate
    kinds: frozenset[IdCategory] = CHECKABLE_KINDS
    when: NodePredicate | None = None
    message: str = ""

    def __post_init__(self) -> None:
        domain_ids.validate_rule_id(self.id)
        object.__setattr__(self, "severity", RuleSeverity(self.severity))
        kinds = frozenset(IdCategory(kind) for kind in self.kinds)
        if not kinds or not kinds <= CHECKABLE_KINDS:
            raise ValueError(f"rule {self.id}: kinds must be a non-empty subset of plan_item, task")
        object.__setattr__(self, "kinds", kinds)

    def applies(self, node: GraphNode, graph: ReferenceGraph) -> bool:
        """In scope when the kind matches and the node opts in or ``when`` holds."""
        if node.kind not in self.kinds:
            return False
        if self.id in declared_rules(node, graph):
            return True
        return self.when is not None and bool(self.when(node, graph))

    def satisfied(self, node: GraphNode, graph: ReferenceGraph) -> bool:
        return bool(self.require(node, graph))

    def violation_message(self, node: GraphNode) -> str:
        template = self.message or _DEFAULT_MESSAGE
        return template.format(node_id=node.id, rule_id=self.id, description=self.description)


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Immutable, insertion-ordered collection of rules keyed by id."""

    rules: tuple[ConstitutionRule, ...] = ()
    sources: tuple[str, ...] = ()
    _by_id: dict[str, ConstitutionRule] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        rules = tuple(self.rules)
        by_id: dict[str, ConstitutionRule] = {}
        for rule in rules:
            if rule.id in by_id:
                raise ValueError(f"duplicate rule id in rule set: {rule.id}")
            by_id[rule.id] = rule
        object.__setattr__(self, "rules", rules)
        object.__setattr__(self, "sources", tuple(self.sources))
        object.__setattr__(self, "_by_id", by_id)

    def __iter__(self) -> Iterator[ConstitutionRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    def get(self, rule_id: str) -> ConstitutionRule | None:
        return self._by_id.get(rule_id)

    def ids(self) -> tuple[str, ...]:
        return tuple(rule.id for rule in self.rules)

    def with_rule(self, rule: ConstitutionRule) -> RuleSet:
        """Return a copy with ``rule`` added, replacing a rule with the same id in place."""
        if rule.id in self._by_id:
            rules = tuple(rule if existing.id == rule.id else existing for existing in self.rules)
        else:
            rules = self.rules + (rule,)
        return RuleSet(rules=rules, sources=self.sources)

    def without_rule(self, rule_id: str) -> RuleSet:
        if rule_id not in self._by_id:
            raise KeyError(f"Unknown rule: {rule_id}")
        return RuleSet(
            rules=tuple(rule for rule in self.rules if rule.id != rule_id),
            sources=self.sources,
        )


def load_rule_set(path: PathLike) -> RuleSet:
    """
    Load a constitution from a YAML file or a directory of ``*.yml``/``*.yaml`` files.

    Directory files are read in lexicographic order; rule ids must be unique
    across all of them. A missing path raises ``FileNotFoundError``.
    """

    root = Path(path).expanduser()
    if not root.exists():
        raise FileNotFoundError(f"constitution path does not exist: {root}")
    if root.is_dir():
        files = tuple(
            sorted(
                (item for item in root.iterdir() if item.is_file() and item.suffix in RULE_FILE_SUFFIXES),
                key=lambda item: item.name,
            )
        )
    else:
        files = (root,)

    rules: list[ConstitutionRule] = []
    seen: dict[str, str] = {}
    for source in files:
        for rule in _load_rules_file(source):
            first = seen.get(rule.id)
            if first is not None:
                raise RuleSetError(
                    path=source,
                    location=rule.id,
                    message=f"duplicate rule id {rule.id} (first declared in {first})",
                )
            seen[rule.id] = str(source)
            rules.append(rule)
    return RuleSet(rules=tuple(rules), sources=tuple(str(item) for item in files))


def parse_rules(payload: object, *, path: str = "<memory>") -> tuple[ConstitutionRule, ...]:
    """Parse an already-loaded YAML payload (list of rules or ``{rules: [...]}``)."""

    if isinstance(payload, Mapping):
        unknown = sorted(set(payload) - {"version", "rules"})
        if unknown:
            raise _rule_error(path, "<root>", f"unexpected fields: {unknown}")
        payload = payload.get("rules", [])
    if payload is None:
        return ()
    if not isinstance(payload, list):
        raise _rule_error(path, "<root>", f"expected a list of rules, got {type(payload).__name__}")
    parsed = tuple(
        _parse_rule(item, path=path, location=f"rules[{index}]") for index, item in enumerate(payload)
    )
    seen: set[str] = set()
    for index, rule in enumerate(parsed):
        if rule.id in seen:
            raise _rule_error(path, f"rules[{index}].id", f"duplicate rule id {rule.id}")
        seen.add(rule.id)
    return parsed


def _load_rules_file(path: Path) -> tuple[ConstitutionRule, ...]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except yaml.YAMLError as exc:
        raise _rule_error(str(path), "<root>", f"invalid YAML ({exc})") from exc
    return parse_rules(loaded, path=str(path))


def _parse_rule(raw: object, *, path: str, location: str) -> ConstitutionRule:
    if not isinstance(raw, Mapping):
        raise _rule_error(path, location, f"expected a mapping, got {type(raw).__name__}")
    keys = set(raw)
    missing = sorted(_REQUIRED_RULE_FIELDS - keys)
    if missing:
        raise _rule_error(path, location, f"missing required fields: {missing}")
    unknown = sorted(keys - _ALLOWED_RULE_FIELDS)
    if unknown:
        raise _rule_error(
            path,
            location,
            f"unexpected fields: {unknown}",
            hint=f"allowed fields: {sorted(_ALLOWED_RULE_FIELDS)}",
        )

    rule_id = raw["id"]
    try:
        domain_ids.validate_rule_id(cast("str", rule_id))
    except ValueError as exc:
        raise _rule_error(path, f"{location}.id", str(exc)) from exc
    rule_id = cast("str", rule_id)

    severity_raw = raw["severity"]
    try:
        severity = RuleSeverity(cast("str", severity_raw))
    except ValueError as exc:
        raise _rule_error(
            path,
            f"{location}.severity",
            f"unknown severity {severity_raw!r}",
            hint="use error, warning or info",
        ) from exc

    description = _require_str(raw["description"], path, f"{location}.description", "description")
    kinds_raw = raw.get("kinds", sorted(kind.value for kind in CHECKABLE_KINDS))
    if isinstance(kinds_raw, str):
        kinds_raw = [kinds_raw]
    if not isinstance(kinds_raw, list) or not kinds_raw:
        raise _rule_error(path, f"{location}.kinds", "kinds must be a non-empty list")
    kinds: set[IdCategory] = set()
    for index, kind in enumerate(kinds_raw):
        if kind not in {item.value for item in CHECKABLE_KINDS}:
            raise _rule_error(
                path, f"{location}.kinds[{index}]", f"unknown kind {kind!r}", hint="use plan_item or task"
            )
        kinds.add(IdCategory(kind))

    message = raw.get("message", "")
    if not isinstance(message, str):
        raise _rule_error(path, f"{location}.message", "message must be a string")
    _check_message_template(message, path, f"{location}.message")

    return ConstitutionRule(
        id=rule_id,
        severity=severity,
        description=description,
        require=compile_predicate(raw["require"], path=path, location=f"{location}.require"),
        kinds=frozenset(kinds),
        when=(
            compile_predicate(raw["when"], path=path, location=f"{location}.when")
            if raw.get("when") is not None
            else None
        ),
        message=message,
    )


def _check_message_template(template: str, path: str, location: str) -> None:
    allowed = sorted(MESSAGE_FIELDS)
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as exc:
        raise _rule_error(
            path, location, f"malformed message template: {exc}", hint="escape literal braces as {{ }}"
        ) from exc
    for _literal, field_name, _spec, _conversion in parsed:
        if field_name is None:
            continue
        root = re.split(r"[.\[]", field_name, maxsplit=1)[0]
        if root not in MESSAGE_FIELDS:
            raise _rule_error(
                path,
                location,
                f"unknown message field {{{field_name}}}",
                hint=f"available fields: {allowed}",
            )


def _require_str(raw: object, path: str, location: str, what: str) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise _rule_error(path, location, f"{what} must be a non-empty string")
    return raw.strip()


def _require_mapping(
    raw: object,
    path: str,
    location: str,
    *,
    required: Iterable[str],
    optional: Iterable[str] = (),
) -> dict[str, object]:
    if not isinstance(raw, Mapping):
        raise _rule_error(path, location, f"expected a mapping, got {type(raw).__name__}")
    required_keys = set(required)
    allowed = required_keys | set(optional)
    missing = sorted(required_keys - set(raw))
    if missing:
        raise _rule_error(path, location, f"missing required fields: {missing}")
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise _rule_error(path, location, f"unexpected fields: {unknown}")
    return {str(key): value for key, value in raw.items()}


def _rule_error(path: str | Path, location: str, message: str, *, hint: str = "") -> RuleSetError:
    return RuleSetError(path=path, location=location, message=message, hint=hint)


__all__ = [
    "CHECKABLE_KINDS",
    "ConstitutionRule",
    "MESSAGE_FIELDS",
    "NodePredicate",
    "PREDICATE_OPERATORS",
    "Predicate",
    "RuleSeverity",
    "RuleSet",
    "compile_predicate",
    "declared_rules",
    "load_rule_set",
    "lookup_field",
    "node_payload",
    "parse_rules",
]
