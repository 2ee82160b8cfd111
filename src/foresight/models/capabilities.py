"""Capability registry: model identifier -> context window and prompt formats.

Resolution order:
1. Exact match against configured capability overrides
2. Longest configured name that prefixes the identifier
3. First family rule whose marker appears in the identifier
4. Conservative default (chat only, small context window)

Unknown models never raise; the pipeline degrades instead of blocking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from foresight.config import ModelCapabilities

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 2048


@dataclass(frozen=True)
class FamilyRule:
    """Capabilities shared by every model whose name contains a marker."""

    family: str
    markers: tuple[str, ...]
    context_window: int
    supports_fim: bool = False
    supports_tools: bool = False
    supports_vision: bool = False

    def matches(self, identifier: str) -> bool:
        lowered = identifier.lower()
        return any(marker in lowered for marker in self.markers)


# Evaluated in order; code-specific families precede their general siblings.
FAMILY_RULES: tuple[FamilyRule, ...] = (
    FamilyRule("codellama", ("codellama", "code-llama"), 16_384, supports_fim=True),
    FamilyRule("deepseek", ("deepseek",), 16_384, supports_fim=True),
    FamilyRule("starcoder", ("starcoder",), 8_192, supports_fim=True),
    FamilyRule("codegemma", ("codegemma",), 8_192, supports_fim=True),
    FamilyRule("granite-code", ("granite-code",), 8_192, supports_fim=True),
    FamilyRule("qwen-coder", ("qwen2.5-coder", "qwen3-coder"), 32_768, supports_fim=True),
    FamilyRule("llava", ("llava", "bakllava", "moondream"), 4_096, supports_vision=True),
    FamilyRule("gemma", ("gemma3",), 8_192, supports_vision=True),
    FamilyRule("llama", ("llama3",), 8_192, supports_tools=True),
    FamilyRule("qwen", ("qwen",), 32_768, supports_tools=True),
    FamilyRule("mistral", ("mistral", "codestral"), 32_768, supports_tools=True),
)


class CapabilityRegistry:
    """Resolves and memoizes ModelCapabilities for model identifiers."""

    def __init__(
        self,
        overrides: dict[str, ModelCapabilities] | None = None,
        rules: tuple[FamilyRule, ...] = FAMILY_RULES,
    ):
        self._overrides = dict(overrides or {})
        self._rules = rules
        self._cache: dict[str, ModelCapabilities] = {}

    def resolve(self, model_identifier: str) -> ModelCapabilities:
        cached = self._cache.get(model_identifier)
        if cached is not None:
            return cached
        resolved = self._resolve_uncached(model_identifier)
        self._cache[model_identifier] = resolved
        return resolved

    def _resolve_uncached(self, identifier: str) -> ModelCapabilities:
        exact = self._overrides.get(identifier)
        if exact is not None:
            return replace(exact, identifier=identifier)

        prefixed = [
            name for name in self._overrides
            if name and identifier.startswith(name)
        ]
        if prefixed:
            best = max(prefixed, key=len)
            return replace(self._overrides[best], identifier=identifier)

        for rule in self._rules:
            if rule.matches(identifier):
                return ModelCapabilities(
                    identifier=identifier,
                    context_window=rule.context_window,
                    supports_fim=rule.supports_fim,
                    supports_tools=rule.supports_tools,
                    supports_vision=rule.supports_vision,
                    family=rule.family,
                )

        logger.debug("No capability rule for %r; using conservative defaults", identifier)
        return ModelCapabilities(
            identifier=identifier,
            context_window=DEFAULT_CONTEXT_WINDOW,
        )
