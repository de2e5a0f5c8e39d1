"""Command-line interface router for spectrace."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

from spec_trace import __version__
from spec_trace.config import (
    ConfigLoadError,
    ConfigValidationError,
    Settings,
    load_settings,
)
from spec_trace.config.schema import LOG_LEVELS
from spec_trace.control_plane import (
    ProjectResult,
    compile_projects,
    diff_projects,
    resolve_project,
    trace_identifier,
    validate_projects,
)
from spec_trace.diagnostics.report import ExitCode
from spec_trace.errors import ProjectLoadError
from spec_trace.observability import LoggingConfig, setup_structured_logging, shutdown_logging
from spec_trace.persistence import ProjectFiles, discover_projects, display_path
from spec_trace.planning import ChangeAction
from spec_trace.ui.render import CLIRenderer, create_renderer

KEEP_CHOICES: Final[tuple[str, ...]] = ("author", "upstream")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = int(ExitCode.VALIDATION_FAILED)

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="spectrace",
        description=(
            "spectrace — specification dependency and traceability compiler.\n\n"
            "Common workflows:\n"
            "  spectrace validate specs/        Parse, link and check coverage\n"
            "  spectrace diff specs/001-auth    Show what compile would write\n"
            "  spectrace compile specs/         Derive plan.yml and tasks.yml\n"
            "  spectrace trace specs/001-auth F001\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to spectrace TOML config (default: ./spectrace.toml if present).",
    )
    common.add_argument(
        "--constitution",
        default=None,
        help="Constitution rule file or directory (overrides config and SPECTRACE_CONSTITUTION_PATH).",
    )
    common.add_argument(
        "--log-level",
        default=None,
        type=str.upper,
        choices=LOG_LEVELS,
        help="Structured log level written to stderr.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # compile -------------------------------------------------------------
    compile_parser = subparsers.add_parser(
        "compile",
        parents=[common],
        help="Run the full pipeline and write derived plan/task documents",
        description=(
            "Parse, link, derive and check every project under PATH, then write\n"
            "plan.yml and tasks.yml next to each spec.yml.\n\n"
            "Examples:\n"
            "  spectrace compile specs/\n"
            "  spectrace compile specs/001-auth --strict --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    compile_parser.add_argument("path", help="Project directory, spec.yml, or root of NNN-* projects")
    compile_parser.add_argument(
        "--strict", action="store_true", default=None, help="Treat pending clarifications as errors"
    )
    compile_parser.add_argument(
        "--workers", type=int, default=None, help="Maximum projects compiled in parallel"
    )
    compile_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    compile_parser.set_defaults(handler=_cmd_compile)

    # validate ------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Parse and link documents and check coverage; derive nothing",
    )
    validate_parser.add_argument("path", help="Project directory, spec.yml, or root of NNN-* projects")
    validate_parser.add_argument(
        "--strict", action="store_true", default=None, help="Treat pending clarifications as errors"
    )
    validate_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    validate_parser.set_defaults(handler=_cmd_validate)

    # diff ----------------------------------------------------------------
    diff_parser = subparsers.add_parser(
        "diff",
        parents=[common],
        help="Show what compile would change without writing",
    )
    diff_parser.add_argument("path", help="Project directory, spec.yml, or root of NNN-* projects")
    diff_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    diff_parser.set_defaults(handler=_cmd_diff)

    # trace ---------------------------------------------------------------
    trace_parser = subparsers.add_parser(
        "trace",
        parents=[common],
        help="Show everything upstream and downstream of one identifier",
    )
    trace_parser.add_argument("path", help="Single project directory or its spec.yml")
    trace_parser.add_argument("identifier", help="Identifier to trace, e.g. F001 or P002")
    trace_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    trace_parser.set_defaults(handler=_cmd_trace)

    # resolve -------------------------------------------------------------
    resolve_parser = subparsers.add_parser(
        "resolve",
        parents=[common],
        help="Resolve a derivation conflict on one plan item",
        description=(
            "Re-stamp a conflicting plan item so the next compile treats it as current.\n\n"
            "  --keep author     keep the override, accept the new upstream digest\n"
            "  --keep upstream   drop the override and regenerate the item\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    resolve_parser.add_argument("path", help="Single project directory or its spec.yml")
    resolve_parser.add_argument("item_id", help="Plan item identifier, e.g. P001")
    resolve_parser.add_argument("--keep", required=True, choices=KEEP_CHOICES)
    resolve_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    resolve_parser.set_defaults(handler=_cmd_resolve)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.IO_ERROR)

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        shutdown_logging()
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_compile(args: argparse.Namespace) -> int:
    settings = _prepare(args)
    run = compile_projects(args.path, settings)

    if _flag(args, "json"):
        _emit_json({"command": "compile", **run.to_dict()})
        return int(run.exit_code)

    renderer = _get_renderer(args)
    for project in run.projects:
        _render_project(renderer, project)
        if project.written:
            renderer.section("Written:")
            renderer.items([display_path(path) for path in project.written])
    renderer.report(run.report)
    return int(run.exit_code)


def _cmd_validate(args: argparse.Namespace) -> int:
    settings = _prepare(args)
    run = validate_projects(args.path, settings)

    if _flag(args, "json"):
        _emit_json({"command": "validate", **run.to_dict()})
        return int(run.exit_code)

    renderer = _get_renderer(args)
    for project in run.projects:
        renderer.kv("Project", project.name)
        if project.lifecycle is not None:
            renderer.kv("Lifecycle", project.lifecycle.value)
    renderer.report(run.report)
    return int(run.exit_code)


def _cmd_diff(args: argparse.Namespace) -> int:
    settings = _prepare(args)
    run = diff_projects(args.path, settings)

    if _flag(args, "json"):
        _emit_json({"command": "diff", **run.to_dict()})
        return int(run.exit_code)

    renderer = _get_renderer(args)
    for project in run.projects:
        renderer.kv("Project", project.name)
        changed = [output for output in project.outputs if output.changed]
        if not changed:
            renderer.text("No changes.")
            continue
        for output in changed:
            renderer.text(output.diff().rstrip("\n"))
    renderer.report(run.report)
    return int(run.exit_code)


def _cmd_trace(args: argparse.Namespace) -> int:
    settings = _prepare(args)
    files = _single_project(args.path)
    try:
        outcome = trace_identifier(files, args.identifier, settings=settings)
    except KeyError as exc:
        raise CLIError(f"unknown identifier {args.identifier} in {files.name}") from exc

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "trace",
                "project": files.name,
                "trace": outcome.trace.to_dict() if outcome.trace is not None else None,
                "report": outcome.report.to_dict(),
            }
        )
        return int(outcome.report.exit_code)

    renderer = _get_renderer(args)
    if outcome.trace is not None:
        renderer.kv("Identifier", f"{outcome.trace.id} ({outcome.trace.kind.value})")
        renderer.section("Upstream:")
        renderer.items(list(outcome.trace.upstream) or ["(none)"])
        renderer.section("Downstream:")
        renderer.items(list(outcome.trace.downstream) or ["(none)"])
    if len(outcome.report):
        renderer.report(outcome.report)
    return int(outcome.report.exit_code)


def _cmd_resolve(args: argparse.Namespace) -> int:
    settings = _prepare(args)
    files = _single_project(args.path)
    try:
        result = resolve_project(files, args.item_id, keep=args.keep, settings=settings)
    except KeyError as exc:
        raise CLIError(f"unknown plan item {args.item_id} in {files.name}") from exc

    if _flag(args, "json"):
        _emit_json({"command": "resolve", **result.to_dict(), "report": result.report.to_dict()})
        return int(result.exit_code)

    renderer = _get_renderer(args)
    renderer.kv("Project", result.name)
    renderer.kv("Resolved", f"{args.item_id} (kept {args.keep})")
    if result.written:
        renderer.items([display_path(path) for path in result.written])
    if len(result.report):
        renderer.report(result.report)
    return int(result.exit_code)


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"))


def _render_project(renderer: CLIRenderer, project: ProjectResult) -> None:
    renderer.kv("Project", project.name)
    if project.lifecycle is not None:
        renderer.kv("Lifecycle", project.lifecycle.value)
    rows = [
        [change.action.value, change.subject, change.detail]
        for change in project.changes
        if change.action is not ChangeAction.PRESERVED
    ]
    renderer.table(["ACTION", "ID", "DETAIL"], rows, title="Changes:")


# ---------------------------------------------------------------------------
# Helpers — config, paths
# ---------------------------------------------------------------------------


def _prepare(args: argparse.Namespace) -> Settings:
    """Load effective settings and start structured logging for this invocation."""

    overrides: dict[str, object] = {
        "constitution.path": getattr(args, "constitution", None),
        "compile.strict": getattr(args, "strict", None),
        "compile.max_workers": getattr(args, "workers", None),
        "observability.log_level": getattr(args, "log_level", None),
    }
    try:
        settings = load_settings(args.config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.IO_ERROR)) from exc

    setup_structured_logging(LoggingConfig(level=settings.log_level, log_dir=settings.log_dir))
    return settings


def _single_project(path: str) -> ProjectFiles:
    try:
        projects = discover_projects(path)
    except ProjectLoadError as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.IO_ERROR)) from exc
    if len(projects) != 1:
        names = ", ".join(project.name for project in projects)
        raise CLIError(
            f"expected a single project, found {len(projects)}: {names}",
            exit_code=int(ExitCode.IO_ERROR),
        )
    return projects[0]


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
