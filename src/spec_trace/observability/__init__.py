"""Structured JSON-lines logging for compiler runs."""

from spec_trace.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    get_correlation_context,
    get_logger,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "get_correlation_context",
    "get_logger",
    "setup_structured_logging",
    "shutdown_logging",
]
