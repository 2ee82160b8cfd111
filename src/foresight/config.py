"""Configuration loader for Foresight.

Loads from foresight.toml with sensible defaults when file is absent,
then applies the OLLAMA_* environment overrides. Configuration is loaded
once at startup and passed via dependency injection.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from foresight.exceptions import ConfigError

DEFAULT_ENDPOINT = "http://localhost:11434"

OLLAMA_MODEL_ENV = "OLLAMA_MODEL"
OLLAMA_API_URL_ENV = "OLLAMA_API_URL"
OLLAMA_API_KEY_ENV = "OLLAMA_API_KEY"


@dataclass(frozen=True)
class ModelCapabilities:
    """What a model can do, resolved once per request."""

    identifier: str = ""
    context_window: int = 2048
    supports_fim: bool = False
    supports_tools: bool = False
    supports_vision: bool = False
    family: str = ""


@dataclass(frozen=True)
class FimTemplate:
    """Delimiter tokens for one model family's fill-in-the-middle format."""

    prefix: str
    suffix: str
    middle: str

    def render(self, prefix_text: str, suffix_text: str) -> str:
        return f"{self.prefix}{prefix_text}{self.suffix}{suffix_text}{self.middle}"


@dataclass(frozen=True)
class ModelConfig:
    """Connection settings for the model server."""

    name: str = ""
    endpoint: str = DEFAULT_ENDPOINT
    api_key: str = ""
    temperature: float = 0.1
    request_timeout_seconds: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.name)

    def __repr__(self) -> str:
        key_display = f"***{self.api_key[-4:]}" if self.api_key else ""
        return (
            f"ModelConfig(name={self.name!r}, endpoint={self.endpoint!r}, "
            f"api_key={key_display!r})"
        )


@dataclass(frozen=True)
class PredictionConfig:
    prefix_budget_bytes: int = 2_000
    suffix_budget_bytes: int = 500
    debounce_ms: int = 75
    max_output_tokens: int = 256
    prefix_ratio: float = 0.8
    chat_prefix_lines: int = 20
    chat_suffix_lines: int = 3

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """Top-level Foresight configuration."""

    model: ModelConfig = field(default_factory=ModelConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    capabilities: dict[str, ModelCapabilities] = field(default_factory=dict)
    fim_templates: dict[str, FimTemplate] = field(default_factory=dict)


def _parse_capabilities(name: str, data: dict) -> ModelCapabilities:
    try:
        context_window = int(data.get("context_window", 2048))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid context_window for {name!r}: {e}") from e
    if context_window <= 0:
        raise ConfigError(f"context_window for {name!r} must be positive")
    return ModelCapabilities(
        identifier=name,
        context_window=context_window,
        supports_fim=bool(data.get("supports_fim", False)),
        supports_tools=bool(data.get("supports_tools", False)),
        supports_vision=bool(data.get("supports_vision", False)),
        family=str(data.get("family", "")),
    )


def _parse_prediction(data: dict) -> PredictionConfig:
    defaults = PredictionConfig()
    values: dict[str, int | float] = {}
    for key in (
        "prefix_budget_bytes", "suffix_budget_bytes", "debounce_ms",
        "max_output_tokens", "chat_prefix_lines", "chat_suffix_lines",
    ):
        raw = data.get(key, getattr(defaults, key))
        try:
            value = int(raw)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid prediction.{key}: {raw!r}") from e
        if value < 0:
            raise ConfigError(f"prediction.{key} must not be negative")
        values[key] = value

    ratio_raw = data.get("prefix_ratio", defaults.prefix_ratio)
    try:
        ratio = float(ratio_raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid prediction.prefix_ratio: {ratio_raw!r}") from e
    if not 0.0 < ratio < 1.0:
        raise ConfigError("prediction.prefix_ratio must be between 0 and 1")
    values["prefix_ratio"] = ratio

    if values["max_output_tokens"] == 0:
        raise ConfigError("prediction.max_output_tokens must be positive")
    return PredictionConfig(**values)


def apply_env_overrides(
    config: Config,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Overlay the OLLAMA_* environment variables onto the model section.

    Empty values are treated as unset.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, str] = {}
    model = env.get(OLLAMA_MODEL_ENV, "")
    if model:
        overrides["name"] = model
    endpoint = env.get(OLLAMA_API_URL_ENV, "")
    if endpoint:
        overrides["endpoint"] = endpoint
    api_key = env.get(OLLAMA_API_KEY_ENV, "")
    if api_key:
        overrides["api_key"] = api_key
    if not overrides:
        return config
    return replace(config, model=replace(config.model, **overrides))


def load_config(path: Path | None = None) -> Config:
    """Load configuration from a TOML file.

    If path is None, searches for foresight.toml in current directory then
    ~/.foresight/. Returns default config if no file is found.
    """
    if path is None:
        candidates = [
            Path.cwd() / "foresight.toml",
            Path.home() / ".foresight" / "foresight.toml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None or not path.exists():
        return Config()

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    model_data = raw.get("model", {})
    try:
        timeout = float(model_data.get("request_timeout_seconds", 30.0))
        temperature = float(model_data.get("temperature", 0.1))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid [model] section in {path}: {e}") from e
    if timeout <= 0:
        raise ConfigError("model.request_timeout_seconds must be positive")
    model = ModelConfig(
        name=str(model_data.get("name", "")),
        endpoint=str(model_data.get("endpoint", DEFAULT_ENDPOINT)) or DEFAULT_ENDPOINT,
        api_key=str(model_data.get("api_key", "")),
        temperature=temperature,
        request_timeout_seconds=timeout,
    )

    prediction = _parse_prediction(raw.get("prediction", {}))

    log_data = raw.get("logging", {})
    logging_cfg = LoggingConfig(level=str(log_data.get("level", "INFO")).upper())

    capabilities: dict[str, ModelCapabilities] = {}
    for name, caps_data in raw.get("capabilities", {}).items():
        if isinstance(caps_data, dict):
            capabilities[name] = _parse_capabilities(name, caps_data)

    fim_templates: dict[str, FimTemplate] = {}
    for family, tmpl_data in raw.get("fim_templates", {}).items():
        if not isinstance(tmpl_data, dict):
            continue
        missing = [k for k in ("prefix", "suffix", "middle") if k not in tmpl_data]
        if missing:
            raise ConfigError(
                f"fim_templates.{family} is missing {', '.join(missing)}"
            )
        fim_templates[family] = FimTemplate(
            prefix=str(tmpl_data["prefix"]),
            suffix=str(tmpl_data["suffix"]),
            middle=str(tmpl_data["middle"]),
        )

    return Config(
        model=model,
        prediction=prediction,
        logging=logging_cfg,
        capabilities=capabilities,
        fim_templates=fim_templates,
    )
