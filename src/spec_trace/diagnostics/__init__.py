"""Diagnostics: stable-coded findings aggregated across pipeline stages."""

from spec_trace.diagnostics.report import (
    CODES,
    Diagnostic,
    DiagnosticCollector,
    DiagnosticReport,
    ExitCode,
    Severity,
    Stage,
)

__all__ = [
    "CODES",
    "Diagnostic",
    "DiagnosticCollector",
    "DiagnosticReport",
    "ExitCode",
    "Severity",
    "Stage",
]
