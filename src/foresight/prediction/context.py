"""Context collection: budgeted prefix/suffix text around a cursor.

Budgets come from two places and the tighter one wins:
- configured byte budgets (prefix_budget_bytes / suffix_budget_bytes)
- the model's context window minus the reserved output allowance,
  split by prefix_ratio

Truncation is line-aligned and always drops the content furthest from
the cursor first. Slack on one side is lent to the other, so a context
whose combined size fits the combined budget is never truncated.
"""

from __future__ import annotations

import logging

from foresight.config import ModelCapabilities, PredictionConfig
from foresight.prediction.types import BufferSnapshot, CursorPosition, PromptContext
from foresight.utils.tokens import estimate_tokens, tokens_to_bytes

logger = logging.getLogger(__name__)


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _split_keepends(text: str) -> list[str]:
    """Split on newlines, keeping them; no empty trailing piece."""
    parts = text.split("\n")
    pieces = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        pieces.append(parts[-1])
    return pieces


def truncate_prefix(prefix: str, budget: int) -> str:
    """Drop whole leading lines until ``prefix`` fits ``budget`` bytes.

    The line holding the cursor is always kept, even when it alone
    exceeds the budget.
    """
    if _byte_len(prefix) <= budget:
        return prefix
    pieces = _split_keepends(prefix)
    sizes = [_byte_len(p) for p in pieces]
    size = sum(sizes)
    start = 0
    while size > budget and start < len(pieces) - 1:
        size -= sizes[start]
        start += 1
    return "".join(pieces[start:])


def truncate_suffix(suffix: str, budget: int) -> str:
    """Drop whole trailing lines until ``suffix`` fits ``budget`` bytes."""
    if _byte_len(suffix) <= budget:
        return suffix
    pieces = _split_keepends(suffix)
    sizes = [_byte_len(p) for p in pieces]
    size = sum(sizes)
    end = len(pieces)
    while size > budget and end > 1:
        end -= 1
        size -= sizes[end]
    return "".join(pieces[:end])


class ContextCollector:
    """Extracts a budgeted PromptContext from an immutable buffer snapshot."""

    def __init__(self, config: PredictionConfig | None = None):
        self._config = config or PredictionConfig()

    def budgets(self, capabilities: ModelCapabilities | None = None) -> tuple[int, int]:
        """Return (prefix_budget, suffix_budget) in bytes."""
        prefix_budget = self._config.prefix_budget_bytes
        suffix_budget = self._config.suffix_budget_bytes
        if capabilities is not None:
            available = tokens_to_bytes(
                capabilities.context_window - self._config.max_output_tokens,
            )
            window_prefix = int(available * self._config.prefix_ratio)
            prefix_budget = min(prefix_budget, window_prefix)
            suffix_budget = min(suffix_budget, available - window_prefix)
        return prefix_budget, suffix_budget

    def collect(
        self,
        snapshot: BufferSnapshot,
        cursor: CursorPosition,
        capabilities: ModelCapabilities | None = None,
    ) -> PromptContext:
        offset = snapshot.offset_of(cursor)
        raw_prefix = snapshot.text[:offset]
        raw_suffix = snapshot.text[offset:]

        prefix_budget, suffix_budget = self.budgets(capabilities)
        prefix_size = _byte_len(raw_prefix)
        suffix_size = _byte_len(raw_suffix)
        total = prefix_budget + suffix_budget

        if prefix_size + suffix_size <= total:
            prefix, suffix = raw_prefix, raw_suffix
        else:
            prefix = truncate_prefix(raw_prefix, max(prefix_budget, total - suffix_size))
            suffix = truncate_suffix(raw_suffix, max(suffix_budget, total - prefix_size))
            logger.debug(
                "Truncated context for %s: prefix %d->%d bytes, suffix %d->%d bytes (~%d tokens)",
                snapshot.buffer_id, prefix_size, _byte_len(prefix),
                suffix_size, _byte_len(suffix), estimate_tokens(prefix + suffix),
            )

        return PromptContext(
            prefix=prefix,
            suffix=suffix,
            language=snapshot.language or "unknown",
            file_path=snapshot.file_path,
            tab_size=snapshot.tab_size,
            hard_tabs=snapshot.hard_tabs,
            diagnostics=tuple(snapshot.diagnostics),
            references=tuple(snapshot.references),
            signatures=tuple(snapshot.signatures),
        )
