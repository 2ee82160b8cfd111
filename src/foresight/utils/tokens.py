"""Unified token estimation.

Single source of truth for the ~4 chars/token heuristic used
when turning a context window into byte budgets.
"""

from __future__ import annotations

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count (~4 chars/token). Always returns >= 1."""
    if not text:
        return 1
    return max(1, len(text) // CHARS_PER_TOKEN)


def tokens_to_bytes(tokens: int) -> int:
    """Approximate byte capacity of a token count. Never negative."""
    return max(0, tokens) * CHARS_PER_TOKEN
