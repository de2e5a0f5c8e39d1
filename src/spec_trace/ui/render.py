"""Output rendering abstraction for the spectrace CLI.

File: src/spec_trace/ui/render.py

Purpose
- Provide a thin rendering layer for CLI output.
- Respect NO_COLOR environment variable and --no-color CLI flag.

What should be included in this file
- CLIRenderer class with methods for common output patterns, including a
  diagnostics report grouped by severity.
- Factory function to create a renderer with appropriate settings.

Functional requirements
- Plain-text rendering must always work; color is only decoration.
"""

from __future__ import annotations

import os
import sys
from typing import IO, TYPE_CHECKING, Final

from spec_trace.diagnostics.report import Severity

if TYPE_CHECKING:
    from collections.abc import Sequence

    from spec_trace.diagnostics.report import DiagnosticReport

_SEVERITY_COLORS: Final[dict[Severity, str]] = {
    Severity.ERROR: "\033[31m",
    Severity.WARNING: "\033[33m",
    Severity.INFO: "\033[36m",
}
_RESET: Final[str] = "\033[0m"
_SECTION_TITLES: Final[dict[Severity, str]] = {
    Severity.ERROR: "Errors:",
    Severity.WARNING: "Warnings:",
    Severity.INFO: "Info:",
}


def _color_allowed(no_color_flag: bool, stream: IO[str]) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    Respects ``NO_COLOR`` env var and ``--no-color`` flag.
    """

    def __init__(self, *, no_color: bool = False, stream: IO[str] | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, self._stream)

    def _print(self, line: str = "") -> None:
        print(line, file=self._stream)

    def heading(self, text: str) -> None:
        self._print(text)

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        self._print(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._print(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self._print(f"  {_pad(list(headers))}")
        self._print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self._print(f"  {_pad(list(row))}")

    def severity_label(self, severity: Severity) -> str:
        label = severity.value.upper()
        if not self._color:
            return label
        return f"{_SEVERITY_COLORS[severity]}{label}{_RESET}"

    def report(self, report: DiagnosticReport) -> None:
        """Print diagnostics grouped by severity, errors first."""

        for severity in Severity:
            group = [item for item in report if item.severity is severity]
            if not group:
                continue
            self.section(_SECTION_TITLES[severity])
            for item in group:
                where = "/".join(part for part in (item.project, item.subject) if part)
                location = f" {where}" if where else ""
                self._print(
                    f"  {self.severity_label(severity)} [{item.code}]{location}: {item.message}"
                )

        counts = report.counts()
        self.section(
            f"{counts['error']} error(s), {counts['warning']} warning(s), {counts['info']} info"
        )


def create_renderer(*, no_color: bool = False, stream: IO[str] | None = None) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]
