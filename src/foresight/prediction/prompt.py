"""Prompt building: FIM strings or completion-only chat conversations.

Model-family dispatch is a table of strategies evaluated in priority
order; the first whose predicate accepts the capabilities renders the
prompt. The chat strategy accepts everything and sits last.

Chat wording lives in prompts/templates/completion.yaml for editability.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import yaml

from foresight.config import FimTemplate, ModelCapabilities, PredictionConfig
from foresight.models.base import Prompt, PromptMessage, SystemMessage, UserMessage
from foresight.prediction.types import Framing, PromptContext

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "prompts" / "templates"

GENERIC_FIM_FAMILY = "generic"

DEFAULT_FIM_TEMPLATES: dict[str, FimTemplate] = {
    "codellama": FimTemplate("<PRE>", "<SUF>", "<MID>"),
    "deepseek": FimTemplate("<｜fim▁begin｜>", "<｜fim▁hole｜>", "<｜fim▁end｜>"),
    "starcoder": FimTemplate("<fim_prefix>", "<fim_suffix>", "<fim_middle>"),
    GENERIC_FIM_FAMILY: FimTemplate("<|fim_prefix|>", "<|fim_suffix|>", "<|fim_middle|>"),
}


@dataclass(frozen=True)
class PromptStrategy:
    name: str
    framing: Framing
    predicate: Callable[[ModelCapabilities], bool]
    render: Callable[[PromptContext, ModelCapabilities], Prompt]


class PromptBuilder:
    """Renders a PromptContext into the prompt format a model understands."""

    def __init__(
        self,
        config: PredictionConfig | None = None,
        fim_templates: dict[str, FimTemplate] | None = None,
        templates_dir: Path | None = None,
    ):
        self._config = config or PredictionConfig()
        self._fim_templates = {**DEFAULT_FIM_TEMPLATES, **(fim_templates or {})}
        self._template = self._load_template(templates_dir or DEFAULT_TEMPLATES_DIR)
        self._strategies: list[PromptStrategy] = [
            PromptStrategy(
                name="fim",
                framing=Framing.FIM,
                predicate=lambda caps: caps.supports_fim,
                render=self._render_fim,
            ),
            PromptStrategy(
                name="chat",
                framing=Framing.COMPLETION,
                predicate=lambda caps: True,
                render=self._render_chat,
            ),
        ]

    @staticmethod
    def _load_template(templates_dir: Path) -> dict:
        path = templates_dir / "completion.yaml"
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def register_strategy(self, strategy: PromptStrategy, priority: int = 0) -> None:
        """Insert a strategy; lower priority values are tried first."""
        self._strategies.insert(priority, strategy)

    def select(self, capabilities: ModelCapabilities) -> PromptStrategy:
        for strategy in self._strategies:
            if strategy.predicate(capabilities):
                return strategy
        return self._strategies[-1]

    def render(
        self, context: PromptContext, capabilities: ModelCapabilities,
    ) -> tuple[Prompt, Framing]:
        strategy = self.select(capabilities)
        return strategy.render(context, capabilities), strategy.framing

    def build(self, context: PromptContext, capabilities: ModelCapabilities) -> Prompt:
        prompt, _framing = self.render(context, capabilities)
        return prompt

    def fim_template(self, family: str) -> FimTemplate:
        return self._fim_templates.get(family) or self._fim_templates[GENERIC_FIM_FAMILY]

    # --- Strategies ---

    def _render_fim(self, context: PromptContext, capabilities: ModelCapabilities) -> str:
        template = self.fim_template(capabilities.family)
        return template.render(context.prefix, context.suffix)

    def _render_chat(
        self, context: PromptContext, capabilities: ModelCapabilities,
    ) -> list[PromptMessage]:
        t = self._template
        system = SystemMessage(content=t.get("role", "").strip())

        # Manual replacement so braces in paths cannot break formatting
        header = t.get("header", "")
        replacements = {
            "file_path": context.file_path or "<untitled>",
            "language": context.language,
            "tab_size": str(context.tab_size),
            "insert_spaces": "false" if context.hard_tabs else "true",
        }
        for key, value in replacements.items():
            header = header.replace("{" + key + "}", value)

        sections = [header.rstrip("\n")]
        aux = self._format_signals(context)
        if aux:
            sections.append(aux)

        keep = self._config.chat_prefix_lines
        prefix_lines = context.prefix.split("\n")[-keep:] if keep > 0 else [""]
        sections.append(
            t.get("prefix_label", "")
            + "\n"
            + "\n".join(prefix_lines)
            + t.get("cursor_marker", "")
        )

        if context.suffix.strip():
            suffix_lines = context.suffix.split("\n")[:self._config.chat_suffix_lines]
            fence_lang = context.language.lower() if context.language != "unknown" else ""
            sections.append(
                t.get("suffix_label", "")
                + f"\n```{fence_lang}\n"
                + "\n".join(suffix_lines)
                + "\n```"
            )

        sections.append(t.get("closing", ""))
        user = UserMessage(content="\n\n".join(s for s in sections if s) + "\n")
        return [system, user]

    def _format_signals(self, context: PromptContext) -> str:
        t = self._template
        blocks: list[str] = []
        if context.diagnostics:
            lines = [
                f"- line {d.line + 1} [{d.severity}]: {d.message}"
                for d in context.diagnostics
            ]
            blocks.append(t.get("diagnostics_label", "") + "\n" + "\n".join(lines))
        if context.references:
            lines = []
            for r in context.references:
                entry = f"- {r.symbol} ({r.location})"
                if r.excerpt:
                    entry += f": {r.excerpt}"
                lines.append(entry)
            blocks.append(t.get("references_label", "") + "\n" + "\n".join(lines))
        if context.signatures:
            lines = [f"- {s.text}" for s in context.signatures]
            blocks.append(t.get("signatures_label", "") + "\n" + "\n".join(lines))
        return "\n\n".join(blocks)
