"""Tests for tool_audit.analysis.bloat — threshold classification."""

from __future__ import annotations

from tool_audit.analysis.analyzer import ToolAudit
from tool_audit.analysis.bloat import (
    LARGE_SCHEMA_TOKENS,
    SUGGESTIONS,
    VERBOSE_DESCRIPTION_TOKENS,
    BloatIssue,
    BloatKind,
    detect_bloat,
)


def _audit(name: str = "tool", description_tokens: int = 0, schema_tokens: int = 0) -> ToolAudit:
    return ToolAudit(
        name=name,
        description="",
        description_tokens=description_tokens,
        schema_tokens=schema_tokens,
        total_tokens=description_tokens + schema_tokens,
        has_long_description=description_tokens > 50,
    )


class TestDetectBloat:
    """Strict thresholds: 100 description tokens, 200 schema tokens."""

    def test_no_tools_no_issues(self) -> None:
        assert detect_bloat([]) == []

    def test_description_at_threshold_is_fine(self) -> None:
        assert detect_bloat([_audit(description_tokens=VERBOSE_DESCRIPTION_TOKENS)]) == []

    def test_description_above_threshold(self) -> None:
        issues = detect_bloat([_audit("verbose", description_tokens=101)])
        assert len(issues) == 1
        issue = issues[0]
        assert issue.kind is BloatKind.VERBOSE_DESCRIPTION
        assert issue.tool_name == "verbose"
        assert issue.tokens == 101
        assert issue.description == "Tool 'verbose' has very long description (101 tokens)"
        assert issue.suggestion == SUGGESTIONS[BloatKind.VERBOSE_DESCRIPTION]

    def test_schema_at_threshold_is_fine(self) -> None:
        assert detect_bloat([_audit(schema_tokens=LARGE_SCHEMA_TOKENS)]) == []

    def test_schema_above_threshold(self) -> None:
        issues = detect_bloat([_audit("big", schema_tokens=201)])
        assert len(issues) == 1
        assert issues[0].kind is BloatKind.LARGE_SCHEMA
        assert issues[0].tokens == 201
        assert issues[0].description == "Tool 'big' has large input schema (201 tokens)"

    def test_one_tool_can_raise_both_issues(self) -> None:
        """Description issue first, then schema issue."""
        issues = detect_bloat([_audit("both", description_tokens=150, schema_tokens=300)])
        assert [i.kind for i in issues] == [
            BloatKind.VERBOSE_DESCRIPTION,
            BloatKind.LARGE_SCHEMA,
        ]

    def test_issues_follow_tool_order(self) -> None:
        tools = [
            _audit("c", schema_tokens=500),
            _audit("a", description_tokens=10),
            _audit("b", description_tokens=120),
        ]
        assert [i.tool_name for i in detect_bloat(tools)] == ["c", "b"]

    def test_issue_tokens_are_positive(self) -> None:
        tools = [_audit(str(n), n, n * 2) for n in range(0, 400, 7)]
        assert all(issue.tokens > 0 for issue in detect_bloat(tools))


class TestBloatIssue:
    """Report form of a BloatIssue."""

    def test_to_dict_uses_report_keys(self) -> None:
        issue = BloatIssue(
            kind=BloatKind.LARGE_SCHEMA,
            description="Tool 'x' has large input schema (250 tokens)",
            tool_name="x",
            tokens=250,
            suggestion=SUGGESTIONS[BloatKind.LARGE_SCHEMA],
        )
        assert issue.to_dict() == {
            "type": "large_schema",
            "description": "Tool 'x' has large input schema (250 tokens)",
            "tool_name": "x",
            "tokens": 250,
            "suggestion": "Consider simplifying parameter structure or descriptions",
        }

    def test_kind_headings(self) -> None:
        assert BloatKind.VERBOSE_DESCRIPTION.heading == "Verbose Description"
        assert BloatKind.LARGE_SCHEMA.heading == "Large Schema"
