"""Per-service summaries and cross-service totals.

Only successful audits are ever folded in; a failed service has no
ServiceAudit and so contributes nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from tool_audit.analysis.analyzer import ToolAudit, analyze_tool
from tool_audit.analysis.bloat import BloatIssue, BloatKind, detect_bloat


@dataclass(frozen=True)
class ServiceSummary:
    """Aggregate of one service's tool audits.

    Attributes:
        tool_count: Number of tools.
        avg_tokens_per_tool: total // tool_count, 0 without tools.
        max_tokens_per_tool: Largest tool total, 0 without tools.
        min_tokens_per_tool: Smallest nonzero tool total, 0 if none.
        long_description_tools: Tools flagged with a long description.
    """

    tool_count: int = 0
    avg_tokens_per_tool: int = 0
    max_tokens_per_tool: int = 0
    min_tokens_per_tool: int = 0
    long_description_tools: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_count": self.tool_count,
            "avg_tokens_per_tool": self.avg_tokens_per_tool,
            "max_tokens_per_tool": self.max_tokens_per_tool,
            "min_tokens_per_tool": self.min_tokens_per_tool,
            "long_description_tools": self.long_description_tools,
        }


def summarize(tools: Sequence[ToolAudit]) -> ServiceSummary:
    """Summarize a service's tool audits.

    Tools audited at exactly zero tokens do not take part in the minimum.

    Example:
        For tool totals of 10, 0 and 30 the summary has min 10, max 30
        and avg 13 (40 // 3).
    """
    if not tools:
        return ServiceSummary()

    totals = [tool.total_tokens for tool in tools]
    nonzero = [total for total in totals if total > 0]
    return ServiceSummary(
        tool_count=len(tools),
        avg_tokens_per_tool=sum(totals) // len(tools),
        max_tokens_per_tool=max(totals),
        min_tokens_per_tool=min(nonzero) if nonzero else 0,
        long_description_tools=sum(1 for tool in tools if tool.has_long_description),
    )


@dataclass(frozen=True)
class ServiceAudit:
    """Result of one successfully audited service.

    Attributes:
        name: Service name from the registry.
        language: Language tag from the registry.
        tools: Tool audits in the order the service listed them.
        total_tokens: Sum of every tool's total.
        summary: Derived ServiceSummary.
        bloat_issues: Threshold violations, in tool order.
    """

    name: str
    language: str
    tools: tuple[ToolAudit, ...]
    total_tokens: int
    summary: ServiceSummary
    bloat_issues: tuple[BloatIssue, ...] = ()

    @property
    def bloat_tokens(self) -> int:
        return sum(issue.tokens for issue in self.bloat_issues)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "language": self.language,
            "tools": [tool.to_dict() for tool in self.tools],
            "total_tokens": self.total_tokens,
            "summary": self.summary.to_dict(),
            "bloat_issues": [issue.to_dict() for issue in self.bloat_issues],
        }


def build_service_audit(name: str, language: str, tools: Iterable[Any]) -> ServiceAudit:
    """Analyze listed tools and fold them into a ServiceAudit.

    Args:
        name: Service name.
        language: Language tag.
        tools: ``mcp.types.Tool`` definitions in service order.
    """
    audits = tuple(analyze_tool(tool) for tool in tools)
    return ServiceAudit(
        name=name,
        language=language,
        tools=audits,
        total_tokens=sum(tool.total_tokens for tool in audits),
        summary=summarize(audits),
        bloat_issues=tuple(detect_bloat(audits)),
    )


@dataclass(frozen=True)
class AuditTotals:
    """Cross-service aggregate over successful audits."""

    service_count: int = 0
    tool_count: int = 0
    total_tokens: int = 0
    avg_tokens_per_tool: int = 0
    bloat_tokens: int = 0
    bloat_issue_count: int = 0

    @property
    def bloat_percentage(self) -> float:
        """Bloat tokens as a share of all tokens, 0.0 when nothing was measured."""
        if self.total_tokens == 0:
            return 0.0
        return self.bloat_tokens / self.total_tokens * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_count": self.service_count,
            "tool_count": self.tool_count,
            "total_tokens": self.total_tokens,
            "avg_tokens_per_tool": self.avg_tokens_per_tool,
            "bloat_tokens": self.bloat_tokens,
            "bloat_issue_count": self.bloat_issue_count,
            "bloat_percentage": round(self.bloat_percentage, 1),
        }


def aggregate(audits: Iterable[ServiceAudit]) -> AuditTotals:
    """Sum tokens, tools, and bloat across services."""
    audits = list(audits)
    tool_count = sum(audit.summary.tool_count for audit in audits)
    total_tokens = sum(audit.total_tokens for audit in audits)
    return AuditTotals(
        service_count=len(audits),
        tool_count=tool_count,
        total_tokens=total_tokens,
        avg_tokens_per_tool=total_tokens // tool_count if tool_count else 0,
        bloat_tokens=sum(audit.bloat_tokens for audit in audits),
        bloat_issue_count=sum(len(audit.bloat_issues) for audit in audits),
    )


@dataclass(frozen=True)
class RankedTool:
    """A tool audit tagged with the service that advertised it."""

    service: str
    tool: ToolAudit


def heaviest_tools(audits: Iterable[ServiceAudit], limit: int = 10) -> list[RankedTool]:
    """The ``limit`` most expensive tools across services, heaviest first.

    Ties keep service order then tool order.
    """
    ranked = [RankedTool(audit.name, tool) for audit in audits for tool in audit.tools]
    ranked.sort(key=lambda entry: entry.tool.total_tokens, reverse=True)
    return ranked[:limit]


def group_issues(audits: Iterable[ServiceAudit]) -> dict[BloatKind, list[BloatIssue]]:
    """Bloat issues across services grouped by kind, largest first.

    Kinds appear in BloatKind declaration order; kinds without issues are
    omitted.
    """
    grouped: dict[BloatKind, list[BloatIssue]] = {kind: [] for kind in BloatKind}
    for audit in audits:
        for issue in audit.bloat_issues:
            grouped[issue.kind].append(issue)
    return {
        kind: sorted(issues, key=lambda issue: issue.tokens, reverse=True)
        for kind, issues in grouped.items()
        if issues
    }
