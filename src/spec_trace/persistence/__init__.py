"""Filesystem boundary for project documents."""

from spec_trace.persistence.store import (
    LoadedProject,
    ProjectFiles,
    discover_projects,
    display_path,
    load_project,
    read_text,
    render_document,
    unified_diff,
    write_document,
)

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
