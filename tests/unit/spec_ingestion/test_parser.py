"""Unit tests for document parsing and schema validation."""

from __future__ import annotations

import textwrap

import pytest

from spec_trace.domain.models import (
    DocumentKind,
    EntityFlag,
    PlanDocument,
    SpecificationDocument,
    TaskDocument,
    TaskStatus,
)
from spec_trace.errors import ClarificationPending, DuplicateIdentifierError, SchemaError
from spec_trace.spec_ingestion.parser import (
    combine_specifications,
    contains_marker,
    parse_document,
    parse_plan,
    parse_specification,
    parse_tasks,
)

SPEC_TEXT = textwrap.dedent(
    """
    name: Accounts
    description: Account management
    requirements:
      functional:
        - id: F001
          description: Users sign in.
          acceptance_criteria: [valid credentials open a session]
        - id: F002
          description: "Sessions expire after [NEEDS CLARIFICATION: how long?] idle."
          depends_on: [F001]
      non_functional:
        - id: NF001
          description: Sign in completes within 200ms.
    user_scenarios:
      - id: US001
        description: Returning user signs in.
        requirements: [F001]
    """
)


def _spec(text: str = SPEC_TEXT, **kwargs: str) -> SpecificationDocument:
    document = parse_specification(text, path="spec.yml", **kwargs).document
    assert isinstance(document, SpecificationDocument)
    return document


@pytest.mark.unit
def test_parse_specification_builds_entities_in_document_order() -> None:
    result = parse_specification(SPEC_TEXT, path="spec.yml")
    spec = result.document
    assert isinstance(spec, SpecificationDocument)

    assert spec.name == "Accounts"
    assert spec.identifiers() == ("F001", "F002", "NF001", "US001")
    assert spec.functional[1].depends_on == ("F001",)
    assert spec.user_scenarios[0].requirements == ("F001",)
    assert spec.path == "spec.yml"


@pytest.mark.unit
def test_clarification_marker_flags_entity_and_warns() -> None:
    result = parse_specification(SPEC_TEXT, path="spec.yml")
    spec = result.document
    assert isinstance(spec, SpecificationDocument)

    assert spec.pending_clarifications() == ("F002",)
    assert not spec.functional[1].ready_for_derivation
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert isinstance(warning, ClarificationPending)
    assert warning.subject == "F002"
    assert warning.path == "spec.yml"
    assert "[NEEDS CLARIFICATION: how long?]" in str(warning)


@pytest.mark.unit
def test_custom_clarification_marker() -> None:
    text = SPEC_TEXT.replace("[NEEDS CLARIFICATION: how long?]", "TBD(timeout)")
    assert _spec(text).pending_clarifications() == ()
    assert _spec(text, marker="TBD(").pending_clarifications() == ("F002",)
    assert contains_marker("x TBD( y", "TBD(")

    with pytest.raises(ValueError, match="marker"):
        parse_specification(text, marker="  ")


@pytest.mark.unit
def test_missing_required_field_names_location() -> None:
    text = SPEC_TEXT.replace("description: Users sign in.", "title: Users sign in.")
    with pytest.raises(SchemaError) as excinfo:
        parse_specification(text, path="spec.yml")
    assert excinfo.value.path == "spec.yml"
    assert excinfo.value.location == "requirements.functional[0]"
    assert "unexpected fields" in excinfo.value.message


@pytest.mark.unit
def test_duplicate_identifier_rejected() -> None:
    text = SPEC_TEXT.replace("id: F002", "id: F001")
    with pytest.raises(DuplicateIdentifierError) as excinfo:
        parse_specification(text)
    assert excinfo.value.identifier == "F001"


@pytest.mark.unit
def test_identifier_in_wrong_section_rejected() -> None:
    text = SPEC_TEXT.replace("id: NF001", "id: F003")
    with pytest.raises(SchemaError, match="functional identifier"):
        parse_specification(text)


@pytest.mark.unit
def test_self_dependency_rejected() -> None:
    text = SPEC_TEXT.replace("depends_on: [F001]", "depends_on: [F002]")
    with pytest.raises(SchemaError, match="depends on itself"):
        parse_specification(text)


@pytest.mark.unit
def test_invalid_and_empty_yaml() -> None:
    with pytest.raises(SchemaError, match="invalid YAML"):
        parse_specification("name: [unclosed")
    with pytest.raises(SchemaError, match="document is empty"):
        parse_specification("")
    with pytest.raises(SchemaError, match="expected a mapping"):
        parse_specification("- just\n- a list\n")


@pytest.mark.unit
def test_unquoted_clarification_marker_hints_at_quoting() -> None:
    quoted = '"Sessions expire after [NEEDS CLARIFICATION: how long?] idle."'
    text = SPEC_TEXT.replace(quoted, quoted.strip('"'))

    with pytest.raises(SchemaError) as excinfo:
        parse_specification(text, path="spec.yml")

    assert excinfo.value.message == "invalid YAML at line 10"
    assert "quote text containing '[NEEDS CLARIFICATION'" in excinfo.value.hint

    with pytest.raises(SchemaError) as unrelated:
        parse_specification("name: [unclosed")
    assert "quote text" not in unrelated.value.hint


@pytest.mark.unit
def test_parse_plan_requires_implements_and_rules() -> None:
    plan_text = textwrap.dedent(
        """
        version: 1
        plan_items:
          - id: P001
            title: Sign in
            implements: [F001, US001]
            rules: [C001]
            flag: needs_elaboration
            source_digest: 0123abcd0123abcd
            override:
              title: Custom sign in
        """
    )
    plan = parse_plan(plan_text, path="plan.yml").document
    assert isinstance(plan, PlanDocument)
    item = plan.items[0]
    assert item.implements == ("F001", "US001")
    assert item.rules == ("C001",)
    assert item.flag is EntityFlag.NEEDS_ELABORATION
    assert item.override == {"title": "Custom sign in"}
    assert item.is_authored

    with pytest.raises(SchemaError, match="missing required field"):
        parse_plan(plan_text.replace("    rules: [C001]\n", ""))
    with pytest.raises(SchemaError, match="at least one requirement"):
        parse_plan(plan_text.replace("[F001, US001]", "[]"))
    with pytest.raises(SchemaError, match="expected functional, non_functional, user_scenario"):
        parse_plan(plan_text.replace("[F001, US001]", "[T001]"))
    with pytest.raises(SchemaError, match="unsupported schema version"):
        parse_plan(plan_text.replace("version: 1", "version: 9"))


@pytest.mark.unit
def test_parse_tasks_requires_status_and_plan_item() -> None:
    tasks_text = textwrap.dedent(
        """
        version: 1
        tasks:
          - id: T001
            title: Build login form
            plan_item: P001
            status: in_progress
            tests: [TS001]
        """
    )
    tasks = parse_tasks(tasks_text).document
    assert isinstance(tasks, TaskDocument)
    assert tasks.tasks[0].status is TaskStatus.IN_PROGRESS
    assert tasks.tasks[0].tests == ("TS001",)

    with pytest.raises(SchemaError, match="missing required field"):
        parse_tasks(tasks_text.replace("    status: in_progress\n", ""))
    with pytest.raises(SchemaError, match="unknown value"):
        parse_tasks(tasks_text.replace("in_progress", "blocked"))
    with pytest.raises(SchemaError, match="plan_item identifier|expected plan_item"):
        parse_tasks(tasks_text.replace("plan_item: P001", "plan_item: F001"))


@pytest.mark.unit
def test_parse_document_dispatches_by_kind() -> None:
    assert isinstance(parse_document(SPEC_TEXT, DocumentKind.SPECIFICATION).document, SpecificationDocument)
    assert isinstance(parse_document("plan_items: []\n", "plan").document, PlanDocument)
    assert isinstance(parse_document("tasks: []\n", "tasks").document, TaskDocument)


@pytest.mark.unit
def test_combine_specifications_concatenates_fragments() -> None:
    primary = _spec()
    fragment = parse_specification(
        textwrap.dedent(
            """
            name: Fragment
            requirements:
              functional:
                - id: F010
                  description: Password reset.
            """
        ),
        path="spec.reset.yml",
    ).document
    assert isinstance(fragment, SpecificationDocument)

    combined = combine_specifications([primary, fragment])
    assert combined.name == "Accounts"
    assert combined.identifiers() == ("F001", "F002", "F010", "NF001", "US001")

    with pytest.raises(DuplicateIdentifierError):
        combine_specifications([primary, primary])
    with pytest.raises(ValueError, match="at least one"):
        combine_specifications([])
