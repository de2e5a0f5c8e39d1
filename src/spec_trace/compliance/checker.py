"""
spec-trace — compliance checker

File: src/spec_trace/compliance/checker.py

Purpose
- Evaluates every constitution rule against every in-scope plan item and task
  of a reference graph and reports violations.

Functional requirements
- Rules are evaluated independently; a rule whose predicate raises yields a
  ``compliance.rule-evaluation-error`` violation and never stops its siblings.
- Output order is a stable sort on (severity rank, node id, rule id), so the
  worker count never changes the result.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from functools import partial
from typing import Final

from spec_trace.compliance.constitution import CHECKABLE_KINDS, ConstitutionRule, RuleSet
from spec_trace.constants import SEVERITY_RANK
from spec_trace.domain.ids import IdCategory
from spec_trace.domain.models import PlanItem
from spec_trace.errors import RuleEvaluationError
from spec_trace.planning.reference_graph import GraphNode, ReferenceGraph
from spec_trace.utils.concurrency import run_in_threads

CODE_VIOLATION: Final[str] = "compliance.violation"
CODE_UNKNOWN_RULE: Final[str] = "compliance.unknown-rule"
CODE_EVALUATION_ERROR: Final[str] = "compliance.rule-evaluation-error"

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Violation:
    """Machine-readable description of one failed rule on one node."""

    rule_id: str
    node_id: str
    message: str
    severity: str = "error"
    code: str = CODE_VIOLATION

    def __post_init__(self) -> None:
        if self.severity not in SEVERITY_RANK:
            raise ValueError(f"Violation.severity must be one of {sorted(SEVERITY_RANK)}")

    def sort_key(self) -> tuple[int, str, str, str, str]:
        return (SEVERITY_RANK[self.severity], self.node_id, self.rule_id, self.code, self.message)

    def to_dict(self) -> dict[str, str]:
        return {
            "rule_id": self.rule_id,
            "node_id": self.node_id,
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
        }


def check(
    graph: ReferenceGraph,
    rules: RuleSet,
    *,
    max_workers: int = 1,
    kinds: Iterable[IdCategory] | None = None,
) -> tuple[Violation, ...]:
    """
    Evaluate ``rules`` against ``graph``.

    ``kinds`` restricts evaluation to a subset of checkable node kinds (the
    pipeline checks plan items alone before deriving tasks). Orphaned nodes
    are skipped.
    """

    scope = frozenset(kinds) if kinds is not None else CHECKABLE_KINDS
    nodes = tuple(
        node for node in graph.nodes if node.kind in scope and not node.is_orphaned
    )
    violations: list[Violation] = list(_unknown_rule_violations(nodes, rules))
    per_rule = run_in_threads(
        partial(evaluate_rule, graph=graph, nodes=nodes),
        rules.rules,
        max_workers=max_workers,
    )
    for found in per_rule:
        violations.extend(found)
    _LOGGER.debug(
        "compliance check finished",
        extra={"rules": len(rules), "nodes": len(nodes), "violations": len(violations)},
    )
    return tuple(sorted(violations, key=Violation.sort_key))


def evaluate_rule(
    rule: ConstitutionRule,
    *,
    graph: ReferenceGraph,
    nodes: Iterable[GraphNode],
) -> list[Violation]:
    found: list[Violation] = []
    for node in nodes:
        try:
            if not rule.applies(node, graph) or rule.satisfied(node, graph):
                continue
            message = rule.violation_message(node)
        except Exception as exc:  # noqa: BLE001
            error = RuleEvaluationError(rule.id, node.id, exc)
            found.append(
                Violation(
                    rule_id=rule.id,
                    node_id=node.id,
                    message=str(error),
                    severity="error",
                    code=CODE_EVALUATION_ERROR,
                )
            )
            continue
        found.append(
            Violation(
                rule_id=rule.id,
                node_id=node.id,
                message=message,
                severity=rule.severity.value,
            )
        )
    return found


def _unknown_rule_violations(nodes: Iterable[GraphNode], rules: RuleSet) -> list[Violation]:
    found: list[Violation] = []
    for node in nodes:
        entity = node.entity
        if not isinstance(entity, PlanItem):
            continue
        for rule_id in entity.rules:
            if rule_id in rules:
                continue
            found.append(
                Violation(
                    rule_id=rule_id,
                    node_id=node.id,
                    message=f"{node.id} references unknown constitution rule {rule_id}",
                    severity="error",
                    code=CODE_UNKNOWN_RULE,
                )
            )
    return found


__all__ = [
    "CODE_EVALUATION_ERROR",
    "CODE_UNKNOWN_RULE",
    "CODE_VIOLATION",
    "Violation",
    "check",
    "evaluate_rule",
]
