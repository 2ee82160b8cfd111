"""Tests for response reconciliation."""

from __future__ import annotations

import pytest

from foresight.config import ModelCapabilities
from foresight.prediction.reconciler import (
    Reconciler,
    strip_markdown_code_blocks,
    trim_cursor_line_whitespace,
    trim_redundant_prefix,
    trim_redundant_suffix,
)
from foresight.prediction.types import CursorPosition, Framing, PredictionRequest, PromptContext


def _request(prefix: str = "def add(a, b):\n    return a", suffix: str = "", version: int = 1):
    return PredictionRequest(
        id=7,
        context=PromptContext(prefix=prefix, suffix=suffix, language="Python"),
        model=ModelCapabilities(identifier="llama3"),
        buffer_id="add.py",
        anchor=CursorPosition(1, 12),
        snapshot_version=version,
    )


class TestCompletionFraming:
    def test_plain_completion_inserted_at_cursor(self):
        prediction = Reconciler().reconcile(" + b", _request())
        assert prediction is not None
        assert prediction.inserted_text == " + b"
        assert prediction.anchor == CursorPosition(1, 12)
        assert prediction.request_id == 7
        assert prediction.buffer_id == "add.py"

    @pytest.mark.parametrize("raw", [" + b", "\n    print(a)", "b)"])
    def test_idempotent_on_overlap_free_text(self, raw):
        request = _request(prefix="x = add(a,", suffix="\nreturn x")
        first = Reconciler().reconcile(raw, request)
        assert first is not None
        assert first.inserted_text == raw
        second = Reconciler().reconcile(first.inserted_text, request)
        assert second.inserted_text == raw

    def test_echoed_prefix_tail_trimmed(self):
        prediction = Reconciler().reconcile("return a + b", _request())
        assert prediction.inserted_text == " + b"

    def test_echoed_suffix_head_trimmed(self):
        request = _request(prefix="foo(", suffix=")\n")
        prediction = Reconciler().reconcile("1, 2)", request)
        assert prediction.inserted_text == "1, 2"

    def test_fenced_response_unwrapped(self):
        prediction = Reconciler().reconcile("```python\n + b\n```", _request())
        assert prediction.inserted_text == " + b"

    def test_byte_order_mark_removed(self):
        prediction = Reconciler().reconcile("\ufeff + b", _request())
        assert prediction.inserted_text == " + b"

    def test_whitespace_only_completion_yields_nothing(self):
        assert Reconciler().reconcile("  \n ", _request()) is None

    def test_empty_completion_yields_nothing(self):
        assert Reconciler().reconcile("", _request()) is None


class TestFimFraming:
    def test_raw_text_used_directly(self):
        prediction = Reconciler().reconcile("a + b", _request(), Framing.FIM)
        assert prediction.inserted_text == "a + b"

    def test_repeated_indentation_dropped(self):
        request = _request(prefix="def f():\n    ", suffix="\n")
        prediction = Reconciler().reconcile("    return 1", request, Framing.FIM)
        assert prediction.inserted_text == "return 1"

    def test_trailing_newline_repeating_suffix_dropped(self):
        request = _request(prefix="def f():\n    ", suffix="\nprint(f())")
        prediction = Reconciler().reconcile("return 1\n", request, Framing.FIM)
        assert prediction.inserted_text == "return 1"

    def test_mid_line_cursor_keeps_leading_space(self):
        prediction = Reconciler().reconcile(" + b", _request(), Framing.FIM)
        assert prediction.inserted_text == " + b"

    def test_different_indentation_kept(self):
        request = _request(prefix="def f():\n    ", suffix="")
        prediction = Reconciler().reconcile("  x = 1\n", request, Framing.FIM)
        assert prediction.inserted_text == "  x = 1\n"


class TestRewriteFraming:
    def test_full_rewrite_reduced_to_residual(self):
        prediction = Reconciler().reconcile(
            "def add(a, b):\n    return a + b", _request(), Framing.REWRITE,
        )
        assert prediction.inserted_text == " + b"

    def test_rewrite_with_suffix_strips_both_sides(self):
        request = _request(prefix="total = add(", suffix=")\nprint(total)")
        prediction = Reconciler().reconcile(
            "total = add(1, 2)\nprint(total)", request, Framing.REWRITE,
        )
        assert prediction.inserted_text == "1, 2"

    def test_rewrite_of_recent_lines_only(self):
        request = _request(prefix="import os\n\ndef add(a, b):\n    return a")
        prediction = Reconciler().reconcile(
            "def add(a, b):\n    return a + b", request, Framing.REWRITE,
        )
        assert prediction.inserted_text == " + b"

    def test_divergent_rewrite_yields_nothing(self):
        prediction = Reconciler().reconcile(
            "def sub(a, b):\n    return a - b", _request(), Framing.REWRITE,
        )
        assert prediction is None

    def test_rewrite_identical_to_context_yields_nothing(self):
        request = _request()
        assert Reconciler().reconcile(request.context.prefix, request, Framing.REWRITE) is None


class TestStaleAnchor:
    def test_changed_buffer_yields_nothing(self):
        assert Reconciler().reconcile(" + b", _request(version=1), current_version=2) is None

    def test_same_version_accepted(self):
        assert Reconciler().reconcile(" + b", _request(version=3), current_version=3) is not None


class TestHelpers:
    def test_strip_fenced_block(self):
        assert strip_markdown_code_blocks("```\nx = 1\n```") == "x = 1"

    def test_strip_inline_backticks(self):
        assert strip_markdown_code_blocks("`x + 1`") == "x + 1"

    def test_unwrapped_text_unchanged(self):
        assert strip_markdown_code_blocks("  x + 1\n") == "  x + 1\n"

    def test_trim_prefix_bounded(self):
        prefix = "a" * 150
        assert trim_redundant_prefix("a" * 120 + "b", prefix) == "a" * 20 + "b"

    def test_trim_suffix(self):
        assert trim_redundant_suffix("x)\n", ")\nmore") == "x"

    def test_trim_cursor_line_whitespace_without_overlap(self):
        assert trim_cursor_line_whitespace("x = 1", "a = 0\n", "") == "x = 1"
