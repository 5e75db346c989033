"""Unit tests for configuration models."""

import os
import stat

import pytest

from quickedit.models.config import Config, EditConfig, FilterRuleConfig, LLMConfig, SiyuanConfig


VALID_YAML = """
llm:
  endpoint: https://api.openai.com/v1
  api_key: sk-test-key
  model: gpt-4o-mini
"""


def write_config(tmp_path, text, mode=stat.S_IRUSR | stat.S_IWUSR):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(text)
    os.chmod(config_file, mode)
    return config_file


class TestLLMConfig:
    """Test LLM configuration model."""

    def test_valid_llm_config(self):
        config = LLMConfig(endpoint="https://api.openai.com/v1", api_key="sk-test", model="gpt-4o-mini")

        assert "api.openai.com/v1" in str(config.endpoint)
        assert config.num_ctx == 32768
        assert config.temperature == 0.7

    def test_llm_config_immutable(self):
        """Test that LLM config is frozen (immutable)."""
        config = LLMConfig(endpoint="https://api.openai.com/v1", api_key="sk-test", model="gpt-4")

        with pytest.raises(Exception):  # Pydantic ValidationError
            config.api_key = "new-key"

    def test_invalid_endpoint(self):
        with pytest.raises(ValueError):
            LLMConfig(endpoint="not-a-url", api_key="k", model="m")


class TestSiyuanConfig:
    """Test SiYuan connection settings."""

    def test_defaults_to_local_kernel(self):
        config = SiyuanConfig()
        assert str(config.endpoint).startswith("http://127.0.0.1:6806")
        assert config.token == ""


class TestEditConfig:
    """Test edit engine settings."""

    def test_defaults(self):
        config = EditConfig()
        assert config.max_concurrent == 1
        assert config.history_size == 50
        assert config.batch_threshold == 10
        assert config.filter_rules == []

    @pytest.mark.parametrize("field,value", [
        ("max_concurrent", 0),
        ("max_concurrent", 11),
        ("history_size", 0),
        ("history_size", 101),
        ("insert_settle_delay", -1.0),
    ])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(Exception):  # Pydantic ValidationError
            EditConfig(**{field: value})

    def test_filter_rule_defaults(self):
        rule = FilterRuleConfig(pattern="^Sure!")
        assert rule.replacement == ""
        assert rule.flags == "g"
        assert rule.enabled


class TestConfig:
    """Test root configuration model."""

    def test_config_load_valid_yaml(self, tmp_path):
        config_file = write_config(tmp_path, VALID_YAML + """
siyuan:
  endpoint: http://localhost:6806
  token: abc123

edit:
  max_concurrent: 3
  filter_rules:
    - pattern: "^Here is.*?:\\\\s*"
      flags: i
""")
        config = Config.load(config_file)

        assert config.llm.model == "gpt-4o-mini"
        assert config.siyuan.token == "abc123"
        assert config.edit.max_concurrent == 3
        assert config.edit.filter_rules[0].flags == "i"

    def test_config_load_with_defaults(self, tmp_path):
        """Omitted sections use defaults."""
        config = Config.load(write_config(tmp_path, VALID_YAML + "\nsiyuan:\n"))

        assert config.siyuan.token == ""
        assert config.edit.history_size == 50

    def test_config_load_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            Config.load(tmp_path / "nonexistent.yaml")

    def test_config_load_wrong_permissions(self, tmp_path):
        """Test loading config fails when permissions are too open."""
        config_file = write_config(
            tmp_path, VALID_YAML, stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH
        )

        with pytest.raises(PermissionError, match="overly permissive permissions"):
            Config.load(config_file)

    def test_config_load_non_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="YAML mapping"):
            Config.load(write_config(tmp_path, "- just\n- a list\n"))

    def test_config_immutable(self, tmp_path):
        config = Config.load(write_config(tmp_path, VALID_YAML))

        with pytest.raises(Exception):  # Pydantic ValidationError
            config.edit = EditConfig()
