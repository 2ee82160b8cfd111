"""Tests for prompt building."""

from __future__ import annotations

from foresight.config import FimTemplate, ModelCapabilities, PredictionConfig
from foresight.models.base import SystemMessage, UserMessage
from foresight.models.capabilities import CapabilityRegistry
from foresight.prediction.prompt import PromptBuilder, PromptStrategy
from foresight.prediction.types import Diagnostic, Framing, PromptContext

CHAT_CAPS = ModelCapabilities(identifier="llama3", context_window=8192)


def _context(**kwargs) -> PromptContext:
    values = {
        "prefix": "def add(a, b):\n    return a",
        "suffix": "",
        "language": "Python",
        "file_path": "src/add.py",
    }
    values.update(kwargs)
    return PromptContext(**values)


class TestFimStrategy:
    def test_codellama_emits_single_fim_string(self):
        caps = CapabilityRegistry().resolve("codellama:7b")
        prompt = PromptBuilder().build(_context(suffix="\nprint(add(1, 2))"), caps)
        assert isinstance(prompt, str)
        assert prompt == "<PRE>def add(a, b):\n    return a<SUF>\nprint(add(1, 2))<MID>"

    def test_deepseek_delimiters(self):
        caps = CapabilityRegistry().resolve("deepseek-coder:1.3b")
        prompt = PromptBuilder().build(_context(prefix="x = ", suffix=""), caps)
        assert prompt == "<｜fim▁begin｜>x = <｜fim▁hole｜><｜fim▁end｜>"

    def test_unknown_fim_family_uses_generic_delimiters(self):
        caps = ModelCapabilities(identifier="custom", supports_fim=True, family="custom")
        prompt = PromptBuilder().build(_context(prefix="a", suffix="b"), caps)
        assert prompt == "<|fim_prefix|>a<|fim_suffix|>b<|fim_middle|>"

    def test_configured_template_overrides_builtin(self):
        builder = PromptBuilder(fim_templates={"codellama": FimTemplate("[P]", "[S]", "[M]")})
        caps = CapabilityRegistry().resolve("codellama:13b")
        assert builder.build(_context(prefix="a", suffix="b"), caps) == "[P]a[S]b[M]"

    def test_fim_framing_reported(self):
        caps = CapabilityRegistry().resolve("starcoder2:3b")
        _prompt, framing = PromptBuilder().render(_context(), caps)
        assert framing is Framing.FIM


class TestChatStrategy:
    def test_two_message_conversation(self):
        prompt = PromptBuilder().build(_context(), CHAT_CAPS)
        assert isinstance(prompt, list)
        assert len(prompt) == 2
        assert isinstance(prompt[0], SystemMessage)
        assert isinstance(prompt[1], UserMessage)

    def test_system_message_is_completion_only(self):
        system = PromptBuilder().build(_context(), CHAT_CAPS)[0].content
        assert "ONLY the code to insert" in system
        assert "rewrite" not in system.lower()

    def test_user_message_carries_workspace_summary(self):
        user = PromptBuilder().build(_context(), CHAT_CAPS)[1].content
        assert "File: src/add.py" in user
        assert "Language: Python" in user
        assert "Tab size: 4" in user
        assert "Insert spaces: true" in user

    def test_untitled_buffer(self):
        user = PromptBuilder().build(_context(file_path=None), CHAT_CAPS)[1].content
        assert "File: <untitled>" in user

    def test_cursor_marker_is_inline(self):
        user = PromptBuilder().build(_context(), CHAT_CAPS)[1].content
        assert "    return a█  <-- Complete from here" in user

    def test_only_last_n_prefix_lines(self):
        prefix = "\n".join(f"line {i}" for i in range(40))
        builder = PromptBuilder(PredictionConfig(chat_prefix_lines=5))
        user = builder.build(_context(prefix=prefix), CHAT_CAPS)[1].content
        assert "line 35" in user
        assert "line 34\n" not in user

    def test_suffix_block_omitted_when_blank(self):
        user = PromptBuilder().build(_context(suffix="  \n"), CHAT_CAPS)[1].content
        assert "after cursor" not in user

    def test_suffix_fenced_and_limited(self):
        suffix = "\n".join(f"after {i}" for i in range(10))
        user = PromptBuilder().build(_context(suffix=suffix), CHAT_CAPS)[1].content
        assert "Code context after cursor:\n```python\nafter 0\nafter 1\nafter 2\n```" in user
        assert "after 3" not in user

    def test_diagnostics_rendered_only_when_present(self):
        builder = PromptBuilder()
        plain = builder.build(_context(), CHAT_CAPS)[1].content
        assert "Diagnostics" not in plain
        with_diag = builder.build(
            _context(diagnostics=(Diagnostic(line=1, message="undefined name 'b'"),)),
            CHAT_CAPS,
        )[1].content
        assert "- line 2 [error]: undefined name 'b'" in with_diag

    def test_braces_in_path_are_literal(self):
        user = PromptBuilder().build(_context(file_path="src/{name}.py"), CHAT_CAPS)[1].content
        assert "File: src/{name}.py" in user

    def test_completion_framing_reported(self):
        _prompt, framing = PromptBuilder().render(_context(), CHAT_CAPS)
        assert framing is Framing.COMPLETION


class TestStrategyTable:
    def test_registered_strategy_takes_priority(self):
        builder = PromptBuilder()
        builder.register_strategy(PromptStrategy(
            name="vision",
            framing=Framing.COMPLETION,
            predicate=lambda caps: caps.supports_vision,
            render=lambda context, caps: "custom",
        ))
        caps = ModelCapabilities(identifier="llava", supports_vision=True)
        assert builder.build(_context(), caps) == "custom"
        assert builder.select(CHAT_CAPS).name == "chat"
