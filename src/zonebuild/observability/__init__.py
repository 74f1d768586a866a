"""Structured JSON-lines logging for zonebuild runs."""

from zonebuild.observability.logging import (
    RunLog,
    RunLogSettings,
    configure_structlog,
    correlation_scope,
    current_correlation,
    setup_logging,
    shutdown_logging,
    start_run_log,
)

__all__ = [
    "RunLog",
    "RunLogSettings",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "setup_logging",
    "shutdown_logging",
    "start_run_log",
]
