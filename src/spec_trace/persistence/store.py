"""
spec-trace — document store

File: src/spec_trace/persistence/store.py

Purpose
- Filesystem boundary: discovers projects, reads their YAML documents and
  writes derived plan/task documents back.

What should be included in this file
- Project discovery (a directory holding ``spec.yml`` or a root of numbered
  ``NNN-name`` project directories).
- Deterministic YAML rendering (fixed key order, block style, trailing newline).
- Write-if-changed with atomic replace, and unified diffs for dry runs.

Functional requirements
- Rendering the same document twice yields byte-identical text.
- I/O failures surface as ``ProjectLoadError``; parse failures as ``SchemaError``.
"""

from __future__ import annotations

import difflib
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final, cast

import yaml

from spec_trace.constants import (
    DEFAULT_CLARIFICATION_MARKER,
    PLAN_FILENAME,
    PROJECT_DIR_PATTERN,
    SPEC_FILENAME,
    SPEC_FRAGMENT_GLOB,
    TASKS_FILENAME,
)
from spec_trace.domain.models import (
    PlanDocument,
    SpecificationDocument,
    TaskDocument,
)
from spec_trace.errors import ClarificationPending, ProjectLoadError
from spec_trace.spec_ingestion.parser import (
    combine_specifications,
    parse_plan,
    parse_specification,
    parse_tasks,
)
from spec_trace.utils.fs import atomic_write_text

PathLike = str | os.PathLike[str]

_PROJECT_DIR_RE: Final[re.Pattern[str]] = re.compile(PROJECT_DIR_PATTERN)
_YAML_WIDTH: Final[int] = 120


@dataclass(frozen=True, slots=True)
class ProjectFiles:
    """Resolved document paths for one project directory."""

    root: Path
    spec: Path
    fragments: tuple[Path, ...] = ()

    @property
    def name(self) -> str:
        return self.root.name or self.root.resolve().name

    @property
    def plan(self) -> Path:
        return self.root / PLAN_FILENAME

    @property
    def tasks(self) -> Path:
        return self.root / TASKS_FILENAME

    @classmethod
    def for_directory(cls, directory: Path) -> ProjectFiles:
        fragments = tuple(
            sorted(
                (item for item in directory.glob(SPEC_FRAGMENT_GLOB) if item.is_file()),
                key=lambda item: item.name,
            )
        )
        return cls(root=directory, spec=directory / SPEC_FILENAME, fragments=fragments)


@dataclass(frozen=True, slots=True)
class LoadedProject:
    files: ProjectFiles
    spec: SpecificationDocument
    plan: PlanDocument | None = None
    tasks: TaskDocument | None = None
    warnings: tuple[ClarificationPending, ...] = ()


def discover_projects(path: PathLike) -> tuple[ProjectFiles, ...]:
    """
    Resolve ``path`` to one or more projects.

    ``path`` may be a ``spec.yml`` file, a directory containing one, or a root
    whose numbered sub-directories (``001-name``) each contain one.
    """

    root = Path(path)
    if root.is_file():
        if root.name != SPEC_FILENAME:
            raise ProjectLoadError(root, f"expected a directory or a {SPEC_FILENAME} file")
        return (ProjectFiles.for_directory(root.parent),)
    if not root.exists():
        raise ProjectLoadError(root, "path does not exist")
    if not root.is_dir():
        raise ProjectLoadError(root, "path is not a directory")
    if (root / SPEC_FILENAME).is_file():
        return (ProjectFiles.for_directory(root),)

    try:
        candidates = sorted(root.iterdir(), key=lambda item: item.name)
    except OSError as exc:
        raise ProjectLoadError(root, f"cannot list directory: {exc.strerror or exc}") from exc
    projects = tuple(
        ProjectFiles.for_directory(item)
        for item in candidates
        if item.is_dir()
        and _PROJECT_DIR_RE.match(item.name) is not None
        and (item / SPEC_FILENAME).is_file()
    )
    if not projects:
        raise ProjectLoadError(
            root, f"no {SPEC_FILENAME} found here or in numbered project directories (NNN-name)"
        )
    return projects


def read_text(path: Path, *, required: bool = True) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        if required:
            raise ProjectLoadError(path, "file not found") from None
        return None
    except (OSError, UnicodeDecodeError) as exc:
        raise ProjectLoadError(path, f"cannot read file: {exc}") from exc


def load_project(
    files: ProjectFiles, *, marker: str = DEFAULT_CLARIFICATION_MARKER
) -> LoadedProject:
    """Read and parse every document of ``files``; plan and tasks are optional."""

    warnings: list[ClarificationPending] = []
    specs: list[SpecificationDocument] = []
    for spec_path in (files.spec, *files.fragments):
        result = parse_specification(
            read_text(spec_path) or "", path=display_path(spec_path), marker=marker
        )
        specs.append(cast("SpecificationDocument", result.document))
        warnings.extend(result.warnings)

    plan: PlanDocument | None = None
    plan_text = read_text(files.plan, required=False)
    if plan_text is not None:
        plan = cast("PlanDocument", parse_plan(plan_text, path=display_path(files.plan)).document)

    tasks: TaskDocument | None = None
    tasks_text = read_text(files.tasks, required=False)
    if tasks_text is not None:
        tasks = cast(
            "TaskDocument", parse_tasks(tasks_text, path=display_path(files.tasks)).document
        )

    return LoadedProject(
        files=files,
        spec=combine_specifications(specs),
        plan=plan,
        tasks=tasks,
        warnings=tuple(warnings),
    )


def render_document(document: PlanDocument | TaskDocument | SpecificationDocument) -> str:
    """Serialize with fixed key order; identical documents give identical text."""

    rendered = yaml.safe_dump(
        document.to_dict(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=_YAML_WIDTH,
    )
    if not rendered.endswith("\n"):
        rendered = rendered + "\n"
    return rendered


def write_document(document: PlanDocument | TaskDocument, path: Path) -> bool:
    """Write ``document`` to ``path`` only when the rendered text differs; return whether it did."""

    rendered = render_document(document)
    if read_text(path, required=False) == rendered:
        return False
    try:
        atomic_write_text(path, rendered)
    except OSError as exc:
        raise ProjectLoadError(path, f"cannot write file: {exc.strerror or exc}") from exc
    return True


def unified_diff(path: Path, before: str | None, after: str) -> str:
    """Unified diff between current file text (``None`` when absent) and ``after``."""

    label = display_path(path)
    lines = difflib.unified_diff(
        (before or "").splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile="/dev/null" if before is None else f"a/{label}",
        tofile=f"b/{label}",
    )
    return "".join(lines)


def display_path(path: Path) -> str:
    """POSIX path relative to the working directory when possible."""

    try:
        return path.resolve().relative_to(Path.cwd().resolve()).as_posix()
    except ValueError:
        return path.as_posix()


__all__ = [
    "LoadedProject",
    "ProjectFiles",
    "discover_projects",
    "display_path",
    "load_project",
    "read_text",
    "render_document",
    "unified_diff",
    "write_document",
]
