"""Token measurement and bloat classification of listed tools.

All functions here are pure: the same tool definitions always produce the
same audits, issues, and summaries.
"""

from tool_audit.analysis.aggregate import (
    AuditTotals,
    RankedTool,
    ServiceAudit,
    ServiceSummary,
    aggregate,
    build_service_audit,
    group_issues,
    heaviest_tools,
    summarize,
)
from tool_audit.analysis.analyzer import LONG_DESCRIPTION_TOKENS, ToolAudit, analyze_tool
from tool_audit.analysis.bloat import (
    LARGE_SCHEMA_TOKENS,
    VERBOSE_DESCRIPTION_TOKENS,
    BloatIssue,
    BloatKind,
    detect_bloat,
)
from tool_audit.analysis.tokens import CHARS_PER_TOKEN, estimate_tokens, serialize_schema

__all__ = [
    # Tokens
    "CHARS_PER_TOKEN",
    "estimate_tokens",
    "serialize_schema",
    # Analyzer
    "LONG_DESCRIPTION_TOKENS",
    "ToolAudit",
    "analyze_tool",
    # Bloat
    "LARGE_SCHEMA_TOKENS",
    "VERBOSE_DESCRIPTION_TOKENS",
    "BloatIssue",
    "BloatKind",
    "detect_bloat",
    # Aggregation
    "AuditTotals",
    "RankedTool",
    "ServiceAudit",
    "ServiceSummary",
    "aggregate",
    "build_service_audit",
    "group_issues",
    "heaviest_tools",
    "summarize",
]
