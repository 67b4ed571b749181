"""Per-tool token measurement."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from mcp import types

from tool_audit.analysis.tokens import estimate_tokens, serialize_schema

#: Description token count above which a tool counts as long-winded.
LONG_DESCRIPTION_TOKENS = 50


@dataclass(frozen=True)
class ToolAudit:
    """Token measurements for one tool definition.

    Attributes:
        name: Tool name as advertised.
        description: Description text ("" when the tool has none).
        description_tokens: Estimate for the description.
        schema_tokens: Estimate for the canonical JSON input schema.
        total_tokens: description_tokens + schema_tokens.
        has_long_description: description_tokens > LONG_DESCRIPTION_TOKENS.
    """

    name: str
    description: str
    description_tokens: int
    schema_tokens: int
    total_tokens: int
    has_long_description: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def analyze_tool(tool: types.Tool) -> ToolAudit:
    """Measure one tool definition. Pure and deterministic.

    Example:
        >>> tool = types.Tool(name="echo", description="0123456789",
        ...                   inputSchema={"ab": 1})
        >>> analyze_tool(tool).total_tokens
        4
    """
    description = tool.description or ""
    description_tokens = estimate_tokens(description)
    schema_tokens = estimate_tokens(serialize_schema(tool.inputSchema))
    return ToolAudit(
        name=tool.name,
        description=description,
        description_tokens=description_tokens,
        schema_tokens=schema_tokens,
        total_tokens=description_tokens + schema_tokens,
        has_long_description=description_tokens > LONG_DESCRIPTION_TOKENS,
    )
