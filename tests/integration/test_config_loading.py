"""Integration tests for configuration loading with environment overrides."""

import pytest

from quickedit.config.loader import load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "QUICKEDIT_LLM_ENDPOINT",
        "QUICKEDIT_LLM_API_KEY",
        "QUICKEDIT_LLM_MODEL",
        "QUICKEDIT_SIYUAN_ENDPOINT",
        "QUICKEDIT_SIYUAN_TOKEN",
        "QUICKEDIT_EDIT_MAX_CONCURRENT",
        "QUICKEDIT_EDIT_HISTORY_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfigLoading:
    """Integration tests for the full config loading workflow."""

    def test_load_from_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
llm:
  endpoint: http://localhost:11434/v1
  api_key: ollama
  model: qwen2.5:7b
  num_ctx: 16384

edit:
  history_size: 20
""")
        config = load_config(config_file)

        assert config.llm.model == "qwen2.5:7b"
        assert config.llm.num_ctx == 16384
        assert config.edit.history_size == 20

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
llm:
  endpoint: https://api.openai.com/v1
  api_key: from-file
  model: gpt-4o-mini
""")
        monkeypatch.setenv("QUICKEDIT_LLM_API_KEY", "from-env")
        monkeypatch.setenv("QUICKEDIT_SIYUAN_TOKEN", "siyuan-token")
        monkeypatch.setenv("QUICKEDIT_EDIT_MAX_CONCURRENT", "4")

        config = load_config(config_file)

        assert config.llm.api_key == "from-env"
        assert config.llm.model == "gpt-4o-mini"
        assert config.siyuan.token == "siyuan-token"
        assert config.edit.max_concurrent == 4

    def test_env_only_without_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUICKEDIT_LLM_ENDPOINT", "http://localhost:11434/v1")
        monkeypatch.setenv("QUICKEDIT_LLM_API_KEY", "ollama")
        monkeypatch.setenv("QUICKEDIT_LLM_MODEL", "llama3")

        config = load_config(tmp_path / "missing.yaml")

        assert config.llm.model == "llama3"
        assert config.edit.max_concurrent == 1

    def test_invalid_integer_override_ignored(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
llm:
  endpoint: https://api.openai.com/v1
  api_key: k
  model: m
""")
        monkeypatch.setenv("QUICKEDIT_EDIT_HISTORY_SIZE", "lots")

        assert load_config(config_file).edit.history_size == 50

    def test_missing_file_and_env(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="QUICKEDIT_"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_endpoint_rejected(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
llm:
  endpoint: not-a-valid-url
  api_key: k
  model: m
""")
        with pytest.raises(ValueError):
            load_config(config_file)
