"""Response reconciliation: raw model output -> minimal insertion.

FIM output is the edit itself, less any whitespace it repeats from the
cursor line. Completion-only chat output may still arrive fenced or echo
a little of the surrounding text, so fences and bounded overlaps are
trimmed. Legacy rewrite output repeats the whole excerpt, and only the
residual middle between the matched prefix and suffix is kept.
"""

from __future__ import annotations

import logging

from foresight.prediction.types import EditPrediction, Framing, PredictionRequest

logger = logging.getLogger(__name__)

MAX_PREFIX_OVERLAP = 100
MAX_SUFFIX_OVERLAP = 80


def strip_markdown_code_blocks(text: str) -> str:
    """Unwrap a fenced block or inline backticks around the whole text.

    Text that is not wrapped is returned unchanged.
    """
    stripped = text.strip()
    if stripped.startswith("```"):
        lines = stripped.split("\n")
        if len(lines) > 2 and lines[-1].strip() == "```":
            return "\n".join(lines[1:-1])
    if (
        len(stripped) > 2
        and stripped.startswith("`")
        and stripped.endswith("`")
        and "\n" not in stripped
    ):
        return stripped[1:-1]
    return text


def trim_redundant_prefix(completion: str, prefix: str, limit: int = MAX_PREFIX_OVERLAP) -> str:
    """Drop the longest head of ``completion`` that repeats the tail of ``prefix``."""
    longest = min(len(prefix), len(completion), limit)
    for count in range(longest, 0, -1):
        if prefix[-count:] == completion[:count]:
            return completion[count:]
    return completion


def trim_redundant_suffix(completion: str, suffix: str, limit: int = MAX_SUFFIX_OVERLAP) -> str:
    """Drop the longest tail of ``completion`` that repeats the head of ``suffix``."""
    longest = min(len(suffix), len(completion), limit)
    for count in range(longest, 0, -1):
        if completion[-count:] == suffix[:count]:
            return completion[:-count]
    return completion


def trim_cursor_line_whitespace(completion: str, prefix: str, suffix: str) -> str:
    """Drop whitespace the completion repeats from around the cursor.

    Leading indentation is dropped when the cursor line so far is only
    that indentation. Trailing whitespace is dropped when the suffix
    already starts with it.
    """
    cursor_line = prefix.rsplit("\n", 1)[-1]
    if cursor_line and not cursor_line.strip() and completion.startswith(cursor_line):
        completion = completion[len(cursor_line):]
    trailing = len(completion) - len(completion.rstrip())
    for count in range(trailing, 0, -1):
        if suffix.startswith(completion[-count:]):
            return completion[:-count]
    return completion


def _line_aligned_overlap(prefix: str, text: str) -> int:
    """Length of the longest tail of ``prefix`` starting at a line boundary
    that ``text`` begins with. Zero when there is none."""
    if not prefix:
        return 0
    starts = [0] + [i + 1 for i, ch in enumerate(prefix) if ch == "\n"]
    for start in starts:
        tail = prefix[start:]
        if tail and text.startswith(tail):
            return len(tail)
    return 0


def _common_suffix_prefix(text: str, suffix: str) -> int:
    longest = min(len(text), len(suffix))
    for count in range(longest, 0, -1):
        if text[-count:] == suffix[:count]:
            return count
    return 0


class Reconciler:
    """Turns a raw completion into an EditPrediction, or nothing."""

    def reconcile(
        self,
        raw_completion: str,
        request: PredictionRequest,
        framing: Framing = Framing.COMPLETION,
        current_version: int | None = None,
    ) -> EditPrediction | None:
        """Reconcile ``raw_completion`` against the request's context.

        Returns None when the buffer moved past the request's snapshot,
        or when nothing remains to insert.
        """
        if current_version is not None and current_version != request.snapshot_version:
            logger.debug(
                "Dropping request %d: buffer at version %d, request saw %d",
                request.id, current_version, request.snapshot_version,
            )
            return None

        text = raw_completion.strip("\ufeff")
        context = request.context

        if framing is Framing.FIM:
            text = trim_cursor_line_whitespace(text, context.prefix, context.suffix)
        elif framing is Framing.COMPLETION:
            text = strip_markdown_code_blocks(text)
            text = trim_redundant_prefix(text, context.prefix)
            text = trim_redundant_suffix(text, context.suffix)
        elif framing is Framing.REWRITE:
            residual = self._residual_middle(
                strip_markdown_code_blocks(text), context.prefix, context.suffix,
            )
            if residual is None:
                logger.debug("Request %d: rewrite diverges from the prefix", request.id)
                return None
            text = residual

        if not text.strip():
            return None

        return EditPrediction(
            anchor=request.anchor,
            inserted_text=text,
            request_id=request.id,
            buffer_id=request.buffer_id,
            snapshot_version=request.snapshot_version,
        )

    @staticmethod
    def _residual_middle(text: str, prefix: str, suffix: str) -> str | None:
        matched = _line_aligned_overlap(prefix, text)
        if prefix and matched == 0:
            return None
        middle = text[matched:]
        if suffix:
            middle = middle[:len(middle) - _common_suffix_prefix(middle, suffix)]
        return middle
