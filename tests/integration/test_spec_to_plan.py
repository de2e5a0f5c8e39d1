"""
Integration test: spec ingestion through planning and compliance.

Purpose:
- Verify that the sample project parses into the expected requirements.
- Verify deterministic plan/task derivation and constitution checking over the sample.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from spec_trace.compliance import check, load_rule_set
from spec_trace.domain.models import EntityFlag
from spec_trace.persistence import ProjectFiles, load_project, render_document
from spec_trace.planning import CoverageKind, ReferenceGraph, derive_plan, derive_tasks

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SAMPLE_PROJECT = PROJECT_ROOT / "samples" / "specs" / "001-example"
SAMPLE_CONSTITUTION = PROJECT_ROOT / "samples" / "constitution.yml"


@pytest.mark.integration
def test_sample_spec_ingestion_assertions() -> None:
    loaded = load_project(ProjectFiles.for_directory(SAMPLE_PROJECT))

    spec = loaded.spec
    assert spec.name == "Example project"
    assert spec.identifiers() == ("F001", "F002", "US001")
    by_id = {item.id: item for item in spec.functional}
    assert len(by_id["F001"].acceptance_criteria) == 2
    assert by_id["F002"].depends_on == ("F001",)
    assert by_id["F002"].clarification
    assert not by_id["F001"].clarification
    assert [warning.subject for warning in loaded.warnings] == ["F002"]
    assert loaded.plan is None
    assert loaded.tasks is None


@pytest.mark.integration
def test_sample_derivation_and_compliance() -> None:
    loaded = load_project(ProjectFiles.for_directory(SAMPLE_PROJECT))
    rules = load_rule_set(SAMPLE_CONSTITUTION)
    assert rules.ids() == ("C001", "C002", "C003")

    plan = derive_plan(loaded.spec).plan
    tasks = derive_tasks(plan).tasks
    assert plan.identifiers() == ("P001", "P002")
    assert plan.items[1].flag is EntityFlag.NEEDS_ELABORATION
    assert tasks.identifiers() == ("T001", "T002", "T003")

    graph = ReferenceGraph.build((loaded.spec, plan, tasks))
    order = graph.topological_order()
    assert order.index("US001") < order.index("F001") < order.index("F002")
    assert order.index("F001") < order.index("P001") < order.index("T001")
    assert order.index("F002") < order.index("P002") < order.index("T003")
    assert graph.coverage(CoverageKind.REQUIREMENT) == ()
    assert graph.coverage(CoverageKind.PLAN_ITEM) == ()
    assert graph.coverage(CoverageKind.TASK) == ("T001", "T002", "T003")

    violations = check(graph, rules)
    assert [(item.rule_id, item.node_id, item.severity) for item in violations] == [
        ("C002", "P002", "warning"),
        ("C003", "T001", "info"),
        ("C003", "T002", "info"),
        ("C003", "T003", "info"),
    ]
    assert violations[0].message == "P002 should list acceptance criteria (C002)"


@pytest.mark.integration
def test_sample_derivation_is_deterministic() -> None:
    first = load_project(ProjectFiles.for_directory(SAMPLE_PROJECT))
    second = load_project(ProjectFiles.for_directory(SAMPLE_PROJECT))

    plan_a = derive_plan(first.spec).plan
    plan_b = derive_plan(second.spec).plan
    assert render_document(plan_a) == render_document(plan_b)
    assert render_document(derive_tasks(plan_a).tasks) == render_document(
        derive_tasks(plan_b).tasks
    )
