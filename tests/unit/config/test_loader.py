"""
spec-trace — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Whether the constitution path was chosen explicitly.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from spec_trace.config.loader import (
    ConfigLoadError,
    Settings,
    dump_effective_config,
    load_config,
    load_settings,
)
from spec_trace.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.unit
def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "spectrace.toml"
    _write_config(
        config_path,
        """
[compile]
max_workers = 2
""".strip(),
    )

    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"SPECTRACE_COMPILE_MAX_WORKERS": "3"})
    cli_loaded = load_config(
        config_path,
        environ={"SPECTRACE_COMPILE_MAX_WORKERS": "3"},
        cli_overrides={"compile.max_workers": 4},
    )

    assert file_loaded["compile"]["max_workers"] == 2
    assert env_loaded["compile"]["max_workers"] == 3
    assert cli_loaded["compile"]["max_workers"] == 4
    assert cli_loaded["compile"]["strict"] is False


@pytest.mark.unit
def test_missing_default_config_file_uses_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={})

    assert isinstance(settings, Settings)
    assert settings.constitution_path == tmp_path.resolve() / "constitution.yml"
    assert settings.constitution_explicit is False
    assert settings.strict is False
    assert settings.max_workers == 1
    assert settings.clarification_marker == "[NEEDS CLARIFICATION"
    assert settings.log_level == "WARNING"
    assert settings.log_dir is None


@pytest.mark.unit
def test_explicit_config_file_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


@pytest.mark.unit
def test_invalid_toml_and_unknown_keys(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    _write_config(broken, "[compile\nstrict = true")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})

    unknown = tmp_path / "unknown.toml"
    _write_config(unknown, "[compile]\nturbo = true\n")
    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(unknown, environ={})
    assert [issue.path for issue in excinfo.value.issues] == ["compile.turbo"]


@pytest.mark.unit
def test_env_coercion_and_errors(tmp_path: Path) -> None:
    config_path = tmp_path / "spectrace.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "SPECTRACE_COMPILE_STRICT": "yes",
            "SPECTRACE_OBSERVABILITY_LOG_LEVEL": "debug",
            "SPECTRACE_COMPILE_CLARIFICATION_MARKER": "TBD(",
        },
    )
    assert loaded["compile"]["strict"] is True
    assert loaded["observability"]["log_level"] == "DEBUG"
    assert loaded["compile"]["clarification_marker"] == "TBD("

    with pytest.raises(ConfigLoadError, match="must be a boolean"):
        load_config(config_path, environ={"SPECTRACE_COMPILE_STRICT": "maybe"})
    with pytest.raises(ConfigLoadError, match="must be an integer"):
        load_config(config_path, environ={"SPECTRACE_COMPILE_MAX_WORKERS": "many"})
    with pytest.raises(ConfigValidationError, match="must be >= 1"):
        load_config(config_path, environ={"SPECTRACE_COMPILE_MAX_WORKERS": "0"})


@pytest.mark.unit
def test_paths_resolve_against_config_file_or_cwd(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_dir = tmp_path / "conf"
    config_path = config_dir / "spectrace.toml"
    _write_config(
        config_path,
        """
[constitution]
path = "rules/constitution.yml"

[observability]
log_dir = "logs"
""".strip(),
    )
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.chdir(work_dir)

    from_file = load_settings(config_path, environ={})
    assert from_file.constitution_path == config_dir.resolve() / "rules" / "constitution.yml"
    assert from_file.log_dir == config_dir.resolve() / "logs"
    assert from_file.constitution_explicit is True

    from_cli = load_settings(config_path, environ={}, cli_overrides={"constitution.path": "c.yml"})
    assert from_cli.constitution_path == work_dir.resolve() / "c.yml"


@pytest.mark.unit
def test_constitution_explicit_via_env_or_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert load_settings(environ={"SPECTRACE_CONSTITUTION_PATH": "x.yml"}).constitution_explicit
    assert load_settings(environ={}, cli_overrides={"constitution.path": "y.yml"}).constitution_explicit
    assert not load_settings(environ={}, cli_overrides={"constitution.path": None}).constitution_explicit


@pytest.mark.unit
def test_empty_log_dir_disables_file_sink(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={"SPECTRACE_OBSERVABILITY_LOG_DIR": ""})
    assert settings.log_dir is None


@pytest.mark.unit
def test_dump_effective_config_is_deterministic(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    first = dump_effective_config(load_config(environ={}))
    second = dump_effective_config(load_config(environ={}))
    assert first == second
    assert list(json.loads(first)) == ["compile", "constitution", "observability"]
