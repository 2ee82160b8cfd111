"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from foresight.config import (
    Config,
    ConfigError,
    ModelConfig,
    apply_env_overrides,
    load_config,
)


class TestDefaultConfig:
    """Test default configuration values."""

    def test_default_model_disabled(self):
        config = Config()
        assert config.model.name == ""
        assert config.model.enabled is False
        assert config.model.endpoint == "http://localhost:11434"

    def test_default_prediction(self):
        config = Config()
        assert config.prediction.prefix_budget_bytes == 2000
        assert config.prediction.suffix_budget_bytes == 500
        assert config.prediction.debounce_ms == 75
        assert config.prediction.max_output_tokens == 256
        assert config.prediction.chat_prefix_lines == 20

    def test_debounce_seconds(self):
        assert Config().prediction.debounce_seconds == pytest.approx(0.075)

    def test_repr_masks_api_key(self):
        config = ModelConfig(name="llama3", api_key="secret-abcd")
        assert "secret" not in repr(config)
        assert "***abcd" in repr(config)


class TestLoadConfig:
    """Test TOML configuration loading."""

    def test_load_missing_file_returns_defaults(self):
        config = load_config(Path("/nonexistent/foresight.toml"))
        assert config == Config()

    def test_load_valid_toml(self, tmp_path: Path):
        toml_file = tmp_path / "foresight.toml"
        toml_file.write_text("""\
[model]
name = "codellama:7b"
endpoint = "http://gpu-box:11434"
api_key = "k"
request_timeout_seconds = 12.5

[prediction]
debounce_ms = 120
max_output_tokens = 64
prefix_ratio = 0.75

[logging]
level = "debug"

[capabilities."my-model"]
context_window = 4096
supports_fim = true
family = "starcoder"

[fim_templates.starcoder]
prefix = "<A>"
suffix = "<B>"
middle = "<C>"
""")
        config = load_config(toml_file)
        assert config.model.name == "codellama:7b"
        assert config.model.endpoint == "http://gpu-box:11434"
        assert config.model.request_timeout_seconds == 12.5
        assert config.prediction.debounce_ms == 120
        assert config.prediction.max_output_tokens == 64
        assert config.prediction.prefix_ratio == 0.75
        assert config.prediction.suffix_budget_bytes == 500
        assert config.logging.level == "DEBUG"
        caps = config.capabilities["my-model"]
        assert caps.context_window == 4096
        assert caps.supports_fim is True
        assert caps.family == "starcoder"
        assert config.fim_templates["starcoder"].render("p", "s") == "<A>p<B>s<C>"

    def test_invalid_toml_raises(self, tmp_path: Path):
        toml_file = tmp_path / "foresight.toml"
        toml_file.write_text("[model\nname = ")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(toml_file)

    def test_negative_debounce_rejected(self, tmp_path: Path):
        toml_file = tmp_path / "foresight.toml"
        toml_file.write_text("[prediction]\ndebounce_ms = -5\n")
        with pytest.raises(ConfigError, match="debounce_ms"):
            load_config(toml_file)

    def test_prefix_ratio_out_of_range_rejected(self, tmp_path: Path):
        toml_file = tmp_path / "foresight.toml"
        toml_file.write_text("[prediction]\nprefix_ratio = 1.5\n")
        with pytest.raises(ConfigError, match="prefix_ratio"):
            load_config(toml_file)

    def test_incomplete_fim_template_rejected(self, tmp_path: Path):
        toml_file = tmp_path / "foresight.toml"
        toml_file.write_text('[fim_templates.x]\nprefix = "<P>"\n')
        with pytest.raises(ConfigError, match="suffix, middle"):
            load_config(toml_file)


class TestEnvOverrides:
    def test_env_overrides_model_section(self):
        config = apply_env_overrides(Config(), {
            "OLLAMA_MODEL": "deepseek-coder:6.7b",
            "OLLAMA_API_URL": "http://remote:11434",
            "OLLAMA_API_KEY": "token",
        })
        assert config.model.name == "deepseek-coder:6.7b"
        assert config.model.endpoint == "http://remote:11434"
        assert config.model.api_key == "token"

    def test_empty_env_values_ignored(self):
        base = Config(model=ModelConfig(name="llama3"))
        config = apply_env_overrides(base, {"OLLAMA_MODEL": "", "OLLAMA_API_URL": ""})
        assert config is base
