"""
spec-trace — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Enforce hard-to-cheat CLI behavior for `python -m spec_trace` compile/validate/diff/trace.
- Verify exit codes, command output signals, and the files compile leaves on disk.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"
SAMPLES = PROJECT_ROOT / "samples"


def _run_cli(workdir: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("SPECTRACE_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env["NO_COLOR"] = "1"
    return subprocess.run(
        [sys.executable, "-m", "spec_trace", *args],
        cwd=workdir,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _seed(workdir: Path) -> Path:
    shutil.copytree(SAMPLES, workdir / "samples")
    return workdir / "samples" / "specs" / "001-example"


@pytest.mark.integration
def test_version_flag(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "--version")
    assert completed.returncode == 0, completed.stderr
    assert completed.stdout.startswith("spectrace ")


@pytest.mark.integration
def test_compile_writes_documents_and_reports(tmp_path: Path) -> None:
    project = _seed(tmp_path)

    completed = _run_cli(
        tmp_path,
        "compile",
        "samples/specs",
        "--constitution",
        "samples/constitution.yml",
    )

    assert completed.returncode == 0, completed.stdout + completed.stderr
    assert "Project: 001-example" in completed.stdout
    assert "Lifecycle: tasked" in completed.stdout
    assert "Written:" in completed.stdout
    assert "samples/specs/001-example/plan.yml" in completed.stdout
    assert "[clarification.pending]" in completed.stdout
    assert "0 error(s)" in completed.stdout
    assert (project / "plan.yml").is_file()
    assert (project / "tasks.yml").is_file()

    second = _run_cli(
        tmp_path,
        "compile",
        "samples/specs",
        "--constitution",
        "samples/constitution.yml",
    )
    assert second.returncode == 0, second.stderr
    assert "Written:" not in second.stdout


@pytest.mark.integration
def test_compile_json_is_machine_readable(tmp_path: Path) -> None:
    _seed(tmp_path)

    completed = _run_cli(
        tmp_path,
        "compile",
        "samples/specs/001-example",
        "--constitution",
        "samples/constitution.yml",
        "--json",
    )

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["command"] == "compile"
    (project,) = payload["projects"]
    assert project["project"] == "001-example"
    assert project["lifecycle"] == "tasked"
    assert [change["subject"] for change in project["changes"]][:2] == ["P001", "P002"]
    assert payload["report"]["summary"]["error"] == 0
    codes = {item["code"] for item in payload["report"]["diagnostics"]}
    assert {"clarification.pending", "compliance.violation"} <= codes


@pytest.mark.integration
def test_validate_strict_fails_on_pending_clarification(tmp_path: Path) -> None:
    _seed(tmp_path)

    relaxed = _run_cli(tmp_path, "validate", "samples/specs")
    assert relaxed.returncode == 0, relaxed.stderr
    assert "Lifecycle: draft" in relaxed.stdout
    assert "project finished" not in relaxed.stderr

    chatty = _run_cli(tmp_path, "validate", "samples/specs", "--log-level", "info")
    assert chatty.returncode == 0, chatty.stderr
    assert "project finished" in chatty.stderr

    strict = _run_cli(tmp_path, "validate", "samples/specs", "--strict")
    assert strict.returncode == 1
    assert "ERROR [clarification.pending]" in strict.stdout


@pytest.mark.integration
def test_validate_from_inside_the_project_directory(tmp_path: Path) -> None:
    project = _seed(tmp_path)

    by_directory = _run_cli(project, "validate", ".")
    assert by_directory.returncode == 0, by_directory.stdout + by_directory.stderr
    assert "Project: 001-example" in by_directory.stdout
    assert "Traceback" not in by_directory.stderr

    by_file = _run_cli(project, "compile", "./spec.yml")
    assert by_file.returncode == 0, by_file.stdout + by_file.stderr
    assert "Project: 001-example" in by_file.stdout
    assert (project / "plan.yml").is_file()


@pytest.mark.integration
def test_diff_does_not_write(tmp_path: Path) -> None:
    project = _seed(tmp_path)

    completed = _run_cli(tmp_path, "diff", "samples/specs/001-example")

    assert completed.returncode == 0, completed.stderr
    assert "--- /dev/null" in completed.stdout
    assert "+++ b/samples/specs/001-example/plan.yml" in completed.stdout
    assert not (project / "plan.yml").exists()


@pytest.mark.integration
def test_trace_reports_closure(tmp_path: Path) -> None:
    _seed(tmp_path)
    assert _run_cli(tmp_path, "compile", "samples/specs").returncode == 0

    completed = _run_cli(tmp_path, "trace", "samples/specs/001-example", "P001", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["trace"]["kind"] == "plan_item"
    assert "F001" in payload["trace"]["upstream"]
    assert "T001" in payload["trace"]["downstream"]

    unknown = _run_cli(tmp_path, "trace", "samples/specs/001-example", "F404")
    assert unknown.returncode == 1
    assert "unknown identifier F404" in unknown.stderr


@pytest.mark.integration
def test_io_failures_exit_two(tmp_path: Path) -> None:
    missing_path = _run_cli(tmp_path, "validate", "does-not-exist")
    assert missing_path.returncode == 2
    assert "[io.error]" in missing_path.stdout

    _seed(tmp_path)
    missing_config = _run_cli(tmp_path, "validate", "samples/specs", "--config", "absent.toml")
    assert missing_config.returncode == 2
    assert missing_config.stderr.startswith("error:")

    missing_rules = _run_cli(
        tmp_path, "compile", "samples/specs", "--constitution", "absent.yml"
    )
    assert missing_rules.returncode == 2
