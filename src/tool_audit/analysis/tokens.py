"""Deterministic token estimation.

Not a tokenizer: a character-count heuristic. ``len(text.strip()) / 4``
truncated toward zero. Python strings count code points, so multi-byte
UTF-8 text is measured in characters rather than bytes.
"""

from __future__ import annotations

import json
from typing import Any

#: Conservative average for technical English.
CHARS_PER_TOKEN = 4.0


def estimate_tokens(text: str, chars_per_token: float = CHARS_PER_TOKEN) -> int:
    """Estimate the token cost of ``text``.

    Example:
        >>> estimate_tokens("  abcdefgh  ")
        2
        >>> estimate_tokens("abc")
        0
    """
    return int(len(text.strip()) / chars_per_token)


def serialize_schema(schema: Any) -> str:
    """Canonical JSON for a parameter schema: sorted keys, no whitespace.

    Key order in the service's response does not change the count.
    """
    return json.dumps(
        schema, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )
