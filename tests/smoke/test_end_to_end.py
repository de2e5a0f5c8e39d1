"""
spec-trace — end-to-end smoke test

File: tests/smoke/test_end_to_end.py

Purpose
- Walk one project through its whole life: draft spec, first compile, author
  annotations and requirement removal.
- Validate byte-stable regeneration and that no derived entity is silently deleted.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
import yaml

from spec_trace.config import Settings, load_settings
from spec_trace.control_plane import compile_projects, validate_projects
from spec_trace.diagnostics.report import ExitCode
from spec_trace.domain.models import EntityFlag, LifecycleState

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SAMPLE_PROJECT = PROJECT_ROOT / "samples" / "specs" / "001-example"
SAMPLE_CONSTITUTION = PROJECT_ROOT / "samples" / "constitution.yml"

OVERRIDE_NOTE = "Use the shared auth middleware; see ADR-7."


def _settings(**overrides: object) -> Settings:
    cli_overrides: dict[str, object] = {"constitution.path": str(SAMPLE_CONSTITUTION)}
    cli_overrides.update(overrides)
    return load_settings(None, cli_overrides=cli_overrides, environ={})


def _codes(run: object) -> list[str]:
    return [item.code for item in run.report]  # type: ignore[attr-defined]


@pytest.mark.smoke
def test_end_to_end_project_lifecycle(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    root = tmp_path / "specs"
    project = root / "001-example"
    shutil.copytree(SAMPLE_PROJECT, project)
    plan_path = project / "plan.yml"
    tasks_path = project / "tasks.yml"

    # Draft spec: one pending clarification, no errors.
    validated = validate_projects(root, _settings())
    assert validated.exit_code is ExitCode.SUCCESS
    assert validated.report.errors == ()
    pending = validated.report.with_code("clarification.pending")
    assert [item.subject for item in pending] == ["F002"]
    assert validated.projects[0].lifecycle is LifecycleState.DRAFT

    strict = validate_projects(root, _settings(**{"compile.strict": True}))
    assert strict.exit_code is ExitCode.VALIDATION_FAILED

    # First compile derives one plan item per requirement.
    first = compile_projects(root, _settings())
    assert first.exit_code is ExitCode.SUCCESS, _codes(first)
    plan = first.projects[0].plan
    assert plan is not None
    assert [(item.id, item.implements) for item in plan.items] == [
        ("P001", ("F001",)),
        ("P002", ("F002",)),
    ]
    assert plan.items[1].flag is EntityFlag.NEEDS_ELABORATION
    assert first.projects[0].written == (plan_path, tasks_path)

    # Re-running on an unchanged spec is byte-identical.
    plan_bytes = plan_path.read_bytes()
    tasks_bytes = tasks_path.read_bytes()
    rerun = compile_projects(root, _settings())
    assert rerun.projects[0].written == ()
    assert plan_path.read_bytes() == plan_bytes
    assert tasks_path.read_bytes() == tasks_bytes

    # An author annotation on P001 survives regeneration.
    payload = yaml.safe_load(plan_path.read_text(encoding="utf-8"))
    payload["plan_items"][0]["override"] = {"notes": OVERRIDE_NOTE}
    plan_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    annotated = compile_projects(root, _settings())
    assert annotated.exit_code is ExitCode.SUCCESS
    reloaded = yaml.safe_load(plan_path.read_text(encoding="utf-8"))
    assert reloaded["plan_items"][0]["override"] == {"notes": OVERRIDE_NOTE}
    assert annotated.report.with_code("derivation.conflict") == ()

    # Removing F002 orphans P002 and its task instead of deleting them.
    spec_payload = yaml.safe_load((project / "spec.yml").read_text(encoding="utf-8"))
    spec_payload["requirements"]["functional"] = spec_payload["requirements"]["functional"][:1]
    (project / "spec.yml").write_text(yaml.safe_dump(spec_payload, sort_keys=False), encoding="utf-8")
    shrunk = compile_projects(root, _settings())
    assert shrunk.exit_code is ExitCode.SUCCESS, _codes(shrunk)
    items = yaml.safe_load(plan_path.read_text(encoding="utf-8"))["plan_items"]
    assert [(item["id"], item.get("flag")) for item in items] == [
        ("P001", None),
        ("P002", "orphaned"),
    ]
    assert items[0]["override"] == {"notes": OVERRIDE_NOTE}
    orphaned = [item.subject for item in shrunk.report.with_code("derivation.orphaned")]
    assert orphaned == ["P002", "T003"]
    assert shrunk.report.with_code("clarification.pending") == ()


@pytest.mark.smoke
def test_end_to_end_cycles_are_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    project = tmp_path / "001-cycle"
    shutil.copytree(SAMPLE_PROJECT, project)

    spec_payload = yaml.safe_load((project / "spec.yml").read_text(encoding="utf-8"))
    spec_payload["requirements"]["functional"][0]["depends_on"] = ["F002"]
    (project / "spec.yml").write_text(yaml.safe_dump(spec_payload, sort_keys=False), encoding="utf-8")

    run = compile_projects(project, _settings())

    assert run.exit_code is ExitCode.VALIDATION_FAILED
    assert [item.code for item in run.report.errors] == ["graph.cycle"]
    assert not (project / "plan.yml").exists()

    # A plan whose items depend on each other is rejected by validate as well.
    spec_payload["requirements"]["functional"][0].pop("depends_on")
    (project / "spec.yml").write_text(yaml.safe_dump(spec_payload, sort_keys=False), encoding="utf-8")
    (project / "plan.yml").write_text(
        "version: 1\n"
        "plan_items:\n"
        "  - id: P001\n"
        "    title: Sign in\n"
        "    implements: [F001]\n"
        "    rules: []\n"
        "    depends_on: [P002]\n"
        "  - id: P002\n"
        "    title: Session expiry\n"
        "    implements: [F002]\n"
        "    rules: []\n"
        "    depends_on: [P001]\n",
        encoding="utf-8",
    )

    validated = validate_projects(project, _settings())
    assert validated.exit_code is ExitCode.VALIDATION_FAILED
    assert [item.code for item in validated.report.errors] == ["graph.cycle"]
