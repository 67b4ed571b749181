"""JSON and Markdown reports for a finished audit run.

Reports only read the run; they never reorder or mutate its audits.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tool_audit.analysis import (
    CHARS_PER_TOKEN,
    LONG_DESCRIPTION_TOKENS,
    VERBOSE_DESCRIPTION_TOKENS,
    group_issues,
    heaviest_tools,
)
from tool_audit.auditor import AuditRun
from tool_audit.observability import StatsSummary, get_logger

logger = get_logger(__name__)

JSON_REPORT_FILE = "mcp-client-audit-report.json"
MARKDOWN_REPORT_FILE = "mcp-client-audit-report.md"

#: Bloat token total above which recommendations open with a high-priority block.
HIGH_PRIORITY_BLOAT_TOKENS = 500
ISSUES_PER_KIND = 5
HEAVIEST_TOOL_COUNT = 10
SUMMARY_RULE = "=" * 60


def _now() -> datetime:
    return datetime.now(UTC)


def build_json_report(
    run: AuditRun,
    stats: StatsSummary | None = None,
    generated_at: datetime | None = None,
) -> dict[str, Any]:
    """Structured report document.

    Args:
        run: Finished audit run.
        stats: Optional run statistics to embed.
        generated_at: Report timestamp; defaults to now (UTC).

    Returns:
        JSON-serializable dict with generated_at, totals, audits, failures
        and stats keys.
    """
    return {
        "generated_at": (generated_at or _now()).isoformat(),
        "totals": run.totals().to_dict(),
        "audits": [audit.to_dict() for audit in run.audits],
        "failures": [outcome.to_dict() for outcome in run.failures],
        "stats": stats.to_dict() if stats is not None else None,
    }


def write_json_report(
    run: AuditRun,
    output_dir: Path,
    stats: StatsSummary | None = None,
    generated_at: datetime | None = None,
) -> Path:
    """Write the JSON report into ``output_dir`` and return its path."""
    path = output_dir / JSON_REPORT_FILE
    document = build_json_report(run, stats, generated_at)
    path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.info("JSON report written", path=str(path))
    return path


def render_markdown(run: AuditRun, generated_at: datetime | None = None) -> str:
    """Human-readable report.

    Sections: executive summary, server breakdown (heaviest first), bloat
    issues grouped by kind, heaviest tools, recommendations, methodology
    and failed services.
    """
    audits = run.audits
    totals = run.totals()
    stamp = (generated_at or _now()).strftime("%Y-%m-%d %H:%M:%S")
    lines: list[str] = [
        "# MCP Client-Based Token Audit Report",
        "",
        f"Generated on: {stamp}",
        "",
        "## 🎯 Executive Summary",
        "",
        "**This audit connects directly to MCP servers to get actual tool "
        "definitions sent to AI models.**",
        "",
        f"- **Total Servers Audited**: {totals.service_count}",
        f"- **Total Tools**: {totals.tool_count}",
        f"- **Total Token Usage**: ~{totals.total_tokens} tokens",
    ]
    if totals.tool_count > 0:
        lines.append(f"- **Average Tokens per Tool**: ~{totals.avg_tokens_per_tool} tokens")
    if run.failures:
        lines.append(f"- **Failed Servers**: {len(run.failures)}")
    lines.append("")

    lines += ["## 📊 Server Breakdown", ""]
    ranked = sorted(audits, key=lambda audit: audit.total_tokens, reverse=True)
    for index, audit in enumerate(ranked, start=1):
        summary = audit.summary
        lines.append(f"### {index}. {audit.name} ({audit.language})")
        lines.append(f"- **Total Tokens**: {audit.total_tokens}")
        lines.append(f"- **Tools**: {summary.tool_count}")
        if summary.tool_count > 0:
            lines.append(f"- **Avg Tokens/Tool**: {summary.avg_tokens_per_tool}")
            lines.append(
                f"- **Token Range**: {summary.min_tokens_per_tool} - "
                f"{summary.max_tokens_per_tool}"
            )
        lines.append(
            f"- **Long Descriptions**: {summary.long_description_tools} tools "
            f"(>{LONG_DESCRIPTION_TOKENS} tokens)"
        )
        lines.append("")

    lines += ["## 🚨 Bloat Issues", ""]
    grouped = group_issues(audits)
    if not grouped:
        lines += ["✅ No significant bloat issues detected!", ""]
    else:
        lines += [
            f"**Total Potential Optimization**: ~{totals.bloat_tokens} tokens "
            f"({totals.bloat_percentage:.1f}% of total)",
            "",
        ]
        for kind, issues in grouped.items():
            lines.append(f"### {kind.heading} ({len(issues)} issues)")
            for issue in issues[:ISSUES_PER_KIND]:
                lines.append(f"- **{issue.tool_name}** - {issue.description} ({issue.tokens} tokens)")
                lines.append(f"  *Suggestion*: {issue.suggestion}")
            if len(issues) > ISSUES_PER_KIND:
                lines.append(f"  ... and {len(issues) - ISSUES_PER_KIND} more")
            lines.append("")

    lines += ["## 🔍 Heaviest Tools", ""]
    for index, entry in enumerate(heaviest_tools(audits, HEAVIEST_TOOL_COUNT), start=1):
        tool = entry.tool
        lines.append(f"{index}. **{tool.name}** ({entry.service}): {tool.total_tokens} tokens")
        lines.append(f"   - Description: {tool.description_tokens} tokens")
        lines.append(f"   - Schema: {tool.schema_tokens} tokens")
        lines.append("")

    lines += ["## 💡 Optimization Recommendations", ""]
    if totals.bloat_tokens > HIGH_PRIORITY_BLOAT_TOKENS:
        lines += [
            "### 🔥 High Priority",
            "- **Immediate action recommended** - significant token usage detected",
            f"- Focus on tools with >{VERBOSE_DESCRIPTION_TOKENS} token descriptions",
            "- Consider simplifying complex parameter schemas",
            "",
        ]
    lines += [
        "### 📋 General Recommendations",
        f"- **Tool Descriptions**: Keep under {LONG_DESCRIPTION_TOKENS} tokens when possible",
        "- **Parameter Schemas**: Simplify complex nested structures",
        "- **Parameter Descriptions**: Use concise, clear language",
        "- **Tool Count**: Evaluate if all tools are necessary",
        "",
        "### 🔬 Methodology Notes",
        "- **Accurate Measurement**: Connects directly to MCP servers as a client",
        "- **Real-World Data**: Measures actual tool definitions sent to AI models",
        "- **Language Agnostic**: Works with Go, Python, TypeScript, and any MCP server",
        f"- **Token estimates**: ~{CHARS_PER_TOKEN:g} chars/token "
        "(conservative for technical content)",
        "",
    ]

    if run.failures:
        lines += ["## ❌ Failed Servers", ""]
        for outcome in run.failures:
            lines.append(
                f"- **{outcome.descriptor.name}** ({outcome.descriptor.language}): "
                f"{outcome.error_type}: {outcome.error}"
            )
        lines.append("")

    return "\n".join(lines)


def write_markdown_report(
    run: AuditRun, output_dir: Path, generated_at: datetime | None = None
) -> Path:
    """Write the Markdown report into ``output_dir`` and return its path."""
    path = output_dir / MARKDOWN_REPORT_FILE
    path.write_text(render_markdown(run, generated_at), encoding="utf-8")
    logger.info("Markdown report written", path=str(path))
    return path


def console_summary(run: AuditRun, markdown_written: bool = True) -> list[str]:
    """Closing summary lines for the terminal.

    The pointer to the Markdown report is only printed when it was written.
    """
    totals = run.totals()
    lines = [
        "",
        SUMMARY_RULE,
        "🎯 MCP CLIENT AUDIT SUMMARY",
        SUMMARY_RULE,
        f"📊 Total tokens across {totals.service_count} servers: "
        f"~{totals.total_tokens} tokens",
    ]
    if totals.bloat_tokens > 0:
        lines.append(
            f"⚡ Potential optimization: ~{totals.bloat_tokens} tokens "
            f"({totals.bloat_percentage:.1f}%)"
        )
    if run.failures:
        lines.append(f"❌ {len(run.failures)} server(s) failed")
    if markdown_written:
        lines.append(f"🔧 Check {MARKDOWN_REPORT_FILE} for detailed recommendations")
    lines.append(SUMMARY_RULE)
    return lines
