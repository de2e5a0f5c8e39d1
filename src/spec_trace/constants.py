"""Stable constants shared across compiler stages."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted derived documents.
PLAN_SCHEMA_VERSION: Final[int] = 1
TASKS_SCHEMA_VERSION: Final[int] = 1

# Project layout.
SPEC_FILENAME: Final[str] = "spec.yml"
SPEC_FRAGMENT_GLOB: Final[str] = "spec.*.yml"
PLAN_FILENAME: Final[str] = "plan.yml"
TASKS_FILENAME: Final[str] = "tasks.yml"
PROJECT_DIR_PATTERN: Final[str] = r"^\d{3}-[A-Za-z0-9._-]+$"

# Constitution defaults.
DEFAULT_CONSTITUTION_PATH: Final[str] = "constitution.yml"

# Literal in-text marker for an unresolved ambiguity.
DEFAULT_CLARIFICATION_MARKER: Final[str] = "[NEEDS CLARIFICATION"

# Length of the truncated SHA-256 hex digest stamped on derived entities.
SOURCE_DIGEST_LENGTH: Final[int] = 16

# Derived plan item titles are clipped to this many characters.
MAX_TITLE_LENGTH: Final[int] = 80

# Severity ordering for deterministic report sorting (lower sorts first).
SEVERITY_RANK: Final[dict[str, int]] = {
    "error": 0,
    "warning": 1,
    "info": 2,
}

__all__ = [
    "DEFAULT_CLARIFICATION_MARKER",
    "DEFAULT_CONSTITUTION_PATH",
    "MAX_TITLE_LENGTH",
    "PLAN_FILENAME",
    "PLAN_SCHEMA_VERSION",
    "PROJECT_DIR_PATTERN",
    "SEVERITY_RANK",
    "SOURCE_DIGEST_LENGTH",
    "SPEC_FILENAME",
    "SPEC_FRAGMENT_GLOB",
    "TASKS_FILENAME",
    "TASKS_SCHEMA_VERSION",
]
