"""
spec-trace — pipeline unit tests

File: tests/unit/control_plane/test_pipeline.py

Purpose
- Drive compile/validate/diff/trace/resolve over temporary project trees.
- Pin the write, blocking and strict-mode behavior of the pipeline.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from spec_trace.config import Settings
from spec_trace.constants import DEFAULT_CLARIFICATION_MARKER
from spec_trace.control_plane import (
    compile_projects,
    diff_projects,
    resolve_project,
    trace_identifier,
    validate_projects,
)
from spec_trace.control_plane import pipeline
from spec_trace.control_plane.pipeline import load_constitution
from spec_trace.diagnostics.report import INTERNAL_ERROR, ExitCode
from spec_trace.domain.models import EntityFlag, LifecycleState
from spec_trace.errors import SchemaError
from spec_trace.persistence import discover_projects
from spec_trace.planning import ChangeAction

SPEC_TEXT = """\
name: Auth
description: Sign-in flows.
status: draft
requirements:
  functional:
    - id: F001
      description: Users can sign in with an email address and password.
      acceptance_criteria:
        - A valid pair opens a session.
        - An invalid pair is rejected.
    - id: F002
      description: "Sessions expire after [NEEDS CLARIFICATION: timeout] of inactivity."
      depends_on: [F001]
user_scenarios:
  - id: US001
    description: A returning user signs in.
    requirements: [F001]
"""

BLOCKING_CONSTITUTION = """\
version: 1
rules:
  - id: C001
    severity: error
    description: Plan items carry acceptance criteria
    kinds: [plan_item]
    when: {always: true}
    require:
      field_present: acceptance_criteria
"""


def _settings(tmp_path: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {
        "constitution_path": tmp_path / "constitution.yml",
        "constitution_explicit": False,
        "strict": False,
        "max_workers": 1,
        "clarification_marker": DEFAULT_CLARIFICATION_MARKER,
        "log_level": "INFO",
        "log_dir": None,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def _project(root: Path, name: str = "001-auth", spec_text: str = SPEC_TEXT) -> Path:
    directory = root / name
    directory.mkdir(parents=True)
    (directory / "spec.yml").write_text(spec_text, encoding="utf-8")
    return directory


@pytest.mark.unit
def test_compile_writes_plan_and_tasks(tmp_path: Path) -> None:
    project = _project(tmp_path)

    run = compile_projects(tmp_path, _settings(tmp_path))

    assert run.exit_code is ExitCode.SUCCESS
    (result,) = run.projects
    assert result.name == "001-auth"
    assert result.lifecycle is LifecycleState.TASKED
    assert result.written == (project / "plan.yml", project / "tasks.yml")

    assert result.plan is not None
    assert result.plan.identifiers() == ("P001", "P002")
    assert result.plan.items[0].flag is None
    assert result.plan.items[1].flag is EntityFlag.NEEDS_ELABORATION
    assert result.tasks is not None
    assert [task.plan_item for task in result.tasks.tasks] == ["P001", "P001", "P002"]

    pending = result.report.with_code("clarification.pending")
    assert [item.subject for item in pending] == ["F002"]
    assert result.report.with_code("derivation.needs-elaboration")[0].subject == "P002"
    assert [item.subject for item in result.report.with_code("coverage.task-untested")] == [
        "T001",
        "T002",
        "T003",
    ]


@pytest.mark.unit
def test_second_compile_writes_nothing(tmp_path: Path) -> None:
    project = _project(tmp_path)
    settings = _settings(tmp_path)
    compile_projects(tmp_path, settings)
    plan_before = (project / "plan.yml").read_bytes()
    tasks_before = (project / "tasks.yml").read_bytes()

    run = compile_projects(tmp_path, settings)

    (result,) = run.projects
    assert result.written == ()
    assert all(change.action is ChangeAction.PRESERVED for change in result.changes)
    assert (project / "plan.yml").read_bytes() == plan_before
    assert (project / "tasks.yml").read_bytes() == tasks_before


@pytest.mark.unit
def test_diff_renders_changes_without_writing(tmp_path: Path) -> None:
    project = _project(tmp_path)

    run = diff_projects(project, _settings(tmp_path))

    (result,) = run.projects
    assert result.written == ()
    assert not (project / "plan.yml").exists()
    assert [output.path.name for output in result.outputs] == ["plan.yml", "tasks.yml"]
    assert all(output.changed for output in result.outputs)
    assert result.outputs[0].diff().startswith("--- /dev/null")
    assert "diffs" in result.to_dict()


@pytest.mark.unit
def test_validate_checks_documents_on_disk(tmp_path: Path) -> None:
    _project(tmp_path)

    draft = validate_projects(tmp_path, _settings(tmp_path))
    (result,) = draft.projects
    assert result.lifecycle is LifecycleState.DRAFT
    assert [item.code for item in result.report] == ["clarification.pending"]
    assert draft.exit_code is ExitCode.SUCCESS

    strict = validate_projects(tmp_path, _settings(tmp_path, strict=True))
    assert strict.exit_code is ExitCode.VALIDATION_FAILED
    assert strict.report.errors[0].code == "clarification.pending"

    compile_projects(tmp_path, _settings(tmp_path))
    tasked = validate_projects(tmp_path, _settings(tmp_path))
    assert tasked.projects[0].lifecycle is LifecycleState.TASKED
    assert tasked.exit_code is ExitCode.SUCCESS


@pytest.mark.unit
def test_ready_spec_with_pending_clarification_is_an_error(tmp_path: Path) -> None:
    _project(tmp_path, spec_text=SPEC_TEXT.replace("status: draft", "status: ready"))

    run = validate_projects(tmp_path, _settings(tmp_path))

    assert run.exit_code is ExitCode.VALIDATION_FAILED
    assert len(run.report.with_code("clarification.blocks-ready")) == 1


@pytest.mark.unit
def test_compliance_errors_block_task_derivation(tmp_path: Path) -> None:
    project = _project(tmp_path)
    constitution = tmp_path / "constitution.yml"
    constitution.write_text(BLOCKING_CONSTITUTION, encoding="utf-8")

    run = compile_projects(tmp_path, _settings(tmp_path))

    (result,) = run.projects
    assert run.exit_code is ExitCode.VALIDATION_FAILED
    blocked = result.report.with_code("derivation.tasks-blocked")
    assert [item.subject for item in blocked] == ["P002"]
    assert result.tasks is None
    assert result.written == (project / "plan.yml",)
    assert not (project / "tasks.yml").exists()
    assert result.lifecycle is LifecycleState.PLANNED


@pytest.mark.unit
def test_removed_requirement_orphans_downstream(tmp_path: Path) -> None:
    project = _project(tmp_path)
    settings = _settings(tmp_path)
    compile_projects(tmp_path, settings)

    trimmed = SPEC_TEXT.split("    - id: F002")[0] + SPEC_TEXT.split("timeout] of inactivity.\"\n")[1]
    trimmed = trimmed.replace("      depends_on: [F001]\n", "")
    (project / "spec.yml").write_text(trimmed, encoding="utf-8")

    run = compile_projects(tmp_path, settings)

    (result,) = run.projects
    assert run.exit_code is ExitCode.SUCCESS
    assert result.plan is not None
    assert result.plan.identifiers() == ("P001", "P002")
    assert result.plan.items[1].flag is EntityFlag.ORPHANED
    orphaned = [item.subject for item in result.report.with_code("derivation.orphaned")]
    assert orphaned == ["P002", "T003"]
    assert result.report.with_code("graph.orphan-reference")


@pytest.mark.unit
def test_dependency_cycle_stops_before_derivation(tmp_path: Path) -> None:
    cyclic = SPEC_TEXT.replace(
        "        - An invalid pair is rejected.\n",
        "        - An invalid pair is rejected.\n      depends_on: [F002]\n",
    )
    project = _project(tmp_path, spec_text=cyclic)

    run = compile_projects(tmp_path, _settings(tmp_path))

    (result,) = run.projects
    assert run.exit_code is ExitCode.VALIDATION_FAILED
    assert [item.code for item in result.report.errors] == ["graph.cycle"]
    assert result.plan is None
    assert not (project / "plan.yml").exists()


@pytest.mark.unit
def test_failing_project_does_not_stop_siblings(tmp_path: Path) -> None:
    _project(tmp_path, "001-auth")
    _project(tmp_path, "002-broken", spec_text="name: [unclosed\n")

    run = compile_projects(tmp_path, _settings(tmp_path, max_workers=2))

    assert [project.name for project in run.projects] == ["001-auth", "002-broken"]
    assert run.projects[0].exit_code is ExitCode.SUCCESS
    assert [item.code for item in run.projects[1].report.errors] == ["schema.invalid"]
    assert run.exit_code is ExitCode.VALIDATION_FAILED


@pytest.mark.unit
def test_missing_path_is_an_io_error(tmp_path: Path) -> None:
    run = compile_projects(tmp_path / "absent", _settings(tmp_path))

    assert run.projects == ()
    assert run.exit_code is ExitCode.IO_ERROR


@pytest.mark.unit
def test_trace_walks_both_directions(tmp_path: Path) -> None:
    project = _project(tmp_path)
    compile_projects(tmp_path, _settings(tmp_path))
    (files,) = discover_projects(project)

    outcome = trace_identifier(files, "F001", settings=_settings(tmp_path))

    assert outcome.trace is not None
    assert outcome.trace.upstream == ("US001",)
    assert set(outcome.trace.downstream) == {"F002", "P001", "P002", "T001", "T002", "T003"}
    assert outcome.report.exit_code is ExitCode.SUCCESS

    with pytest.raises(KeyError):
        trace_identifier(files, "F404", settings=_settings(tmp_path))


@pytest.mark.unit
def test_conflict_then_resolve_keep_upstream(tmp_path: Path) -> None:
    project = _project(tmp_path)
    settings = _settings(tmp_path)
    compile_projects(tmp_path, settings)

    plan_path = project / "plan.yml"
    payload = yaml.safe_load(plan_path.read_text(encoding="utf-8"))
    payload["plan_items"][0]["override"] = {"title": "Hand-written sign-in"}
    plan_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    spec_path = project / "spec.yml"
    spec_path.write_text(
        SPEC_TEXT.replace("an email address and password", "a passkey"), encoding="utf-8"
    )

    conflicted = compile_projects(tmp_path, settings).projects[0]
    assert [item.subject for item in conflicted.report.with_code("derivation.conflict")] == ["P001"]
    assert conflicted.plan is not None
    assert conflicted.plan.items[0].override == {"title": "Hand-written sign-in"}

    (files,) = discover_projects(project)
    resolved = resolve_project(files, "P001", keep="upstream", settings=settings)
    assert resolved.written == (plan_path,)
    assert resolved.plan is not None
    assert resolved.plan.items[0].override == {}
    assert resolved.plan.items[0].title == "Users can sign in with a passkey"

    again = compile_projects(tmp_path, settings).projects[0]
    assert again.report.with_code("derivation.conflict") == ()


@pytest.mark.unit
def test_resolve_without_plan_is_an_io_error(tmp_path: Path) -> None:
    project = _project(tmp_path)
    (files,) = discover_projects(project)

    result = resolve_project(files, "P001", keep="author", settings=_settings(tmp_path))

    assert result.exit_code is ExitCode.IO_ERROR
    assert result.written == ()


@pytest.mark.unit
def test_load_constitution_default_and_explicit(tmp_path: Path) -> None:
    assert len(load_constitution(_settings(tmp_path))) == 0

    with pytest.raises(FileNotFoundError):
        load_constitution(_settings(tmp_path, constitution_explicit=True))

    (tmp_path / "constitution.yml").write_text("rules: 7\n", encoding="utf-8")
    with pytest.raises(SchemaError):
        load_constitution(_settings(tmp_path))


@pytest.mark.unit
def test_unexpected_failure_is_isolated_to_its_project(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _project(tmp_path, "001-auth")
    _project(tmp_path, "002-billing", spec_text=SPEC_TEXT.replace("name: Auth", "name: Billing"))
    real_derive_plan = pipeline.derive_plan

    def _derive_plan(spec, existing_plan=None):  # type: ignore[no-untyped-def]
        if spec.name == "Billing":
            raise KeyError("rollback")
        return real_derive_plan(spec, existing_plan)

    monkeypatch.setattr(pipeline, "derive_plan", _derive_plan)

    run = compile_projects(tmp_path, _settings(tmp_path, max_workers=2))

    auth, billing = run.projects
    assert auth.exit_code is ExitCode.SUCCESS
    assert (tmp_path / "001-auth" / "plan.yml").is_file()
    (failure,) = billing.report.with_code(INTERNAL_ERROR)
    assert failure.subject == "002-billing"
    assert "KeyError" in failure.message
    assert not (tmp_path / "002-billing" / "plan.yml").exists()
    assert run.exit_code is ExitCode.INTERNAL_ERROR


@pytest.mark.unit
def test_unexpected_failure_during_validate_is_reported(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _project(tmp_path)

    def _explode(*_args: object, **_kwargs: object) -> None:
        raise RuntimeError("coverage exploded")

    monkeypatch.setattr(pipeline, "_record_coverage", _explode)

    run = validate_projects(tmp_path, _settings(tmp_path))

    (result,) = run.projects
    assert [item.code for item in result.report.errors] == [INTERNAL_ERROR]
    assert result.exit_code is ExitCode.INTERNAL_ERROR


@pytest.mark.unit
def test_resolve_orphaned_item(tmp_path: Path) -> None:
    project = _project(tmp_path)
    settings = _settings(tmp_path)
    compile_projects(tmp_path, settings)
    trimmed = SPEC_TEXT.split("    - id: F002")[0] + SPEC_TEXT.split("timeout] of inactivity.\"\n")[1]
    (project / "spec.yml").write_text(
        trimmed.replace("      depends_on: [F001]\n", ""), encoding="utf-8"
    )
    compile_projects(tmp_path, settings)
    plan_before = (project / "plan.yml").read_bytes()
    (files,) = discover_projects(project)

    kept = resolve_project(files, "P002", keep="author", settings=settings)
    assert kept.exit_code is ExitCode.SUCCESS
    assert kept.written == ()
    assert kept.plan is not None
    assert kept.plan.items[1].flag is EntityFlag.ORPHANED

    upstream = resolve_project(files, "P002", keep="upstream", settings=settings)
    assert upstream.exit_code is ExitCode.VALIDATION_FAILED
    (error,) = upstream.report.errors
    assert (error.code, error.subject) == ("derivation.orphaned", "P002")
    assert "F002" in error.message
    assert upstream.written == ()
    assert (project / "plan.yml").read_bytes() == plan_before
