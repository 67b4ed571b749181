"""Threshold checks over a service's tool audits.

One pass in tool order. A tool adds zero, one, or two issues: a
``verbose_description`` issue when its description exceeds
VERBOSE_DESCRIPTION_TOKENS and a ``large_schema`` issue when its schema
exceeds LARGE_SCHEMA_TOKENS. Both thresholds are strict.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tool_audit.analysis.analyzer import ToolAudit

VERBOSE_DESCRIPTION_TOKENS = 100
LARGE_SCHEMA_TOKENS = 200


class BloatKind(str, Enum):
    """Issue categories; the value is the report key."""

    VERBOSE_DESCRIPTION = "verbose_description"
    LARGE_SCHEMA = "large_schema"

    @property
    def heading(self) -> str:
        """Heading text, e.g. "Verbose Description"."""
        return self.value.replace("_", " ").title()


SUGGESTIONS: dict[BloatKind, str] = {
    BloatKind.VERBOSE_DESCRIPTION: (
        "Consider breaking into sections or using more concise language"
    ),
    BloatKind.LARGE_SCHEMA: "Consider simplifying parameter structure or descriptions",
}


@dataclass(frozen=True)
class BloatIssue:
    """A tool flagged for exceeding a size threshold.

    Attributes:
        kind: Which threshold was exceeded.
        description: Human-readable explanation.
        tool_name: Offending tool.
        tokens: The token count that crossed the threshold.
        suggestion: Remediation hint.
    """

    kind: BloatKind
    description: str
    tool_name: str
    tokens: int
    suggestion: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "description": self.description,
            "tool_name": self.tool_name,
            "tokens": self.tokens,
            "suggestion": self.suggestion,
        }


def detect_bloat(tools: Iterable[ToolAudit]) -> list[BloatIssue]:
    """Flag tools above the description and schema thresholds.

    Args:
        tools: A service's tool audits, in service order.

    Returns:
        Issues in tool order; for one tool the description issue comes
        before the schema issue.
    """
    issues: list[BloatIssue] = []
    for tool in tools:
        if tool.description_tokens > VERBOSE_DESCRIPTION_TOKENS:
            issues.append(
                BloatIssue(
                    kind=BloatKind.VERBOSE_DESCRIPTION,
                    description=(
                        f"Tool '{tool.name}' has very long description "
                        f"({tool.description_tokens} tokens)"
                    ),
                    tool_name=tool.name,
                    tokens=tool.description_tokens,
                    suggestion=SUGGESTIONS[BloatKind.VERBOSE_DESCRIPTION],
                )
            )
        if tool.schema_tokens > LARGE_SCHEMA_TOKENS:
            issues.append(
                BloatIssue(
                    kind=BloatKind.LARGE_SCHEMA,
                    description=(
                        f"Tool '{tool.name}' has large input schema "
                        f"({tool.schema_tokens} tokens)"
                    ),
                    tool_name=tool.name,
                    tokens=tool.schema_tokens,
                    suggestion=SUGGESTIONS[BloatKind.LARGE_SCHEMA],
                )
            )
    return issues
