"""Tests for configuration system."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from codeloop.config import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    OLLAMA_DEFAULT_API_BASE,
    AgentConfig,
    ConfigError,
    apply_cli_overrides,
    is_ollama_model,
    load_config,
)


def write_config(tmp_path, data):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump(data))
    return config_file


class TestAgentConfigModel:
    """Test Pydantic config model validation."""

    def test_defaults(self):
        config = AgentConfig(model="openai/gpt-4o", api_base="http://localhost:4000")
        assert config.api_key is None
        assert config.temperature == 0.0
        assert config.max_output_tokens == 4096
        assert config.max_context_tokens == 128000
        assert config.compression_ratio == 0.9
        assert config.approval_mode == "default"

    def test_compression_threshold(self):
        """Default threshold is 90% of a 128k context window."""
        config = AgentConfig(model="openai/gpt-4o", api_base="http://localhost:4000")
        assert config.compression_threshold == 115200

    def test_custom_compression_threshold(self):
        config = AgentConfig(
            model="openai/gpt-4o",
            api_base="http://localhost:4000",
            max_context_tokens=1000,
            compression_ratio=0.5,
        )
        assert config.compression_threshold == 500

    @pytest.mark.parametrize("ratio", [0.0, -0.1, 1.5])
    def test_compression_ratio_out_of_range(self, ratio):
        with pytest.raises(ValidationError):
            AgentConfig(model="openai/gpt-4o", api_base="http://localhost:4000", compression_ratio=ratio)

    def test_unknown_approval_mode_rejected(self):
        with pytest.raises(ValidationError):
            AgentConfig(model="openai/gpt-4o", api_base="http://localhost:4000", approval_mode="always")

    def test_missing_required_model(self):
        with pytest.raises(ValidationError):
            AgentConfig(api_base="http://localhost:4000")

    def test_unknown_field_rejected(self):
        """Extra fields are rejected (ConfigDict extra=forbid)."""
        with pytest.raises(ValidationError):
            AgentConfig(model="openai/gpt-4o", api_base="http://localhost:4000", unknown_field="value")

    def test_invalid_api_base_no_protocol(self):
        with pytest.raises(ValidationError):
            AgentConfig(model="openai/gpt-4o", api_base="localhost:4000")

    def test_api_base_trailing_slash_stripped(self):
        config = AgentConfig(model="openai/gpt-4o", api_base="http://localhost:4000/")
        assert config.api_base == "http://localhost:4000"

    def test_ollama_models_get_default_api_base(self):
        config = AgentConfig(model="ollama_chat/llama3.2")
        assert config.api_base == OLLAMA_DEFAULT_API_BASE

    def test_ollama_detection(self):
        assert is_ollama_model("ollama/llama3.2")
        assert is_ollama_model("ollama_chat/qwen2.5-coder")
        assert not is_ollama_model("openai/gpt-4o")

    def test_api_key_masked_in_repr(self):
        config = AgentConfig(model="openai/gpt-4o", api_base="http://localhost:4000", api_key="sk-secret-key-123")
        assert "sk-secret-key-123" not in repr(config)
        assert "sk-secret-key-123" not in str(config)
        assert "***" in repr(config)

    def test_default_config_paths(self):
        assert DEFAULT_CONFIG_DIR == Path.home() / ".codeloop"
        assert DEFAULT_CONFIG_FILE == Path.home() / ".codeloop" / "config.yaml"


class TestLoadConfig:
    """Test config loading from YAML files."""

    def test_missing_config_file_raises_error(self, tmp_path):
        fake_path = tmp_path / "nonexistent" / "config.yaml"
        with pytest.raises(ConfigError) as exc_info:
            load_config(fake_path)
        error_msg = str(exc_info.value)
        assert str(fake_path) in error_msg
        assert "model" in error_msg
        assert "api_base" in error_msg

    def test_valid_yaml_loads_successfully(self, tmp_path):
        config = load_config(write_config(tmp_path, {
            "model": "openai/gpt-4o",
            "api_base": "http://localhost:4000",
            "approval_mode": "auto_edit",
            "max_context_tokens": 32000,
        }))
        assert config.model == "openai/gpt-4o"
        assert config.approval_mode == "auto_edit"
        assert config.max_context_tokens == 32000

    def test_invalid_field_is_named(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_config(write_config(tmp_path, {
                "model": "openai/gpt-4o", "api_base": "http://localhost:4000", "compression_ratio": 2,
            }))
        assert "compression_ratio" in str(exc_info.value)

    def test_empty_yaml_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")
        with pytest.raises(ConfigError) as exc_info:
            load_config(config_file)
        assert str(exc_info.value).startswith(f"{config_file} must hold a YAML mapping")

    def test_rejected_settings_list_each_field(self, tmp_path):
        config_file = write_config(tmp_path, {"model": "openai/gpt-4o", "api_base": "localhost", "top_k": 5})
        with pytest.raises(ConfigError) as exc_info:
            load_config(config_file)
        lines = str(exc_info.value).splitlines()
        assert lines[0] == f"Settings in {config_file} were rejected:"
        assert any(line.startswith("  api_base:") and "http://" in line for line in lines)
        assert any(line.startswith("  top_k:") for line in lines)

    def test_api_key_not_in_error_message(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_config(write_config(tmp_path, {"api_base": "not-a-url", "api_key": "sk-super-secret-key"}))
        assert "sk-super-secret-key" not in str(exc_info.value)


class TestCLIOverrides:
    """Test CLI flag override behavior."""

    def _base_config(self) -> AgentConfig:
        return AgentConfig(model="openai/default-model", api_base="http://localhost:4000", api_key="sk-key")

    def test_model_override(self):
        result = apply_cli_overrides(self._base_config(), model="openai/gpt-4o")
        assert result.model == "openai/gpt-4o"
        assert result.api_base == "http://localhost:4000"
        assert result.api_key == "sk-key"

    def test_approval_mode_override(self):
        result = apply_cli_overrides(self._base_config(), approval_mode="yolo")
        assert result.approval_mode == "yolo"

    def test_no_overrides_returns_same_config(self):
        config = self._base_config()
        assert apply_cli_overrides(config) is config

    def test_original_config_unchanged(self):
        config = self._base_config()
        apply_cli_overrides(config, model="new-model")
        assert config.model == "openai/default-model"

    def test_invalid_api_base_override_rejected(self):
        with pytest.raises(ConfigError):
            apply_cli_overrides(self._base_config(), api_base="not-a-url")
