"""Observability for mcp-tool-audit: structured logging and run statistics.

Example:
    from tool_audit.observability import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(service="osmmcp"):
        logger.info("Tools listed", tool_count=12)
"""

from tool_audit.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from tool_audit.observability.stats import (
    AuditRecord,
    AuditStats,
    StatsSummary,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "AuditRecord",
    "AuditStats",
    "StatsSummary",
]
