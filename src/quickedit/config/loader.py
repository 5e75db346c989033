"""Configuration loader with YAML and environment variable support.

This module provides a configuration loader that reads from ~/.config/quickedit/config.yaml
and allows environment variable overrides using QUICKEDIT_* prefix.

Environment variables:
- QUICKEDIT_LLM_ENDPOINT: Override LLM API endpoint
- QUICKEDIT_LLM_API_KEY: Override LLM API key
- QUICKEDIT_LLM_MODEL: Override LLM model name
- QUICKEDIT_SIYUAN_ENDPOINT: Override SiYuan kernel URL
- QUICKEDIT_SIYUAN_TOKEN: Override SiYuan API token
- QUICKEDIT_EDIT_MAX_CONCURRENT: Override concurrent session limit
- QUICKEDIT_EDIT_HISTORY_SIZE: Override undo history capacity
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from quickedit.models.config import Config


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "quickedit" / "config.yaml"


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file. If None, uses ~/.config/quickedit/config.yaml

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist and no overrides are set
        ValueError: If config file is invalid

    Environment Variables:
        QUICKEDIT_LLM_ENDPOINT: Override llm.endpoint
        QUICKEDIT_LLM_API_KEY: Override llm.api_key
        QUICKEDIT_LLM_MODEL: Override llm.model
        QUICKEDIT_SIYUAN_ENDPOINT: Override siyuan.endpoint
        QUICKEDIT_SIYUAN_TOKEN: Override siyuan.token
        QUICKEDIT_EDIT_MAX_CONCURRENT: Override edit.max_concurrent
        QUICKEDIT_EDIT_HISTORY_SIZE: Override edit.history_size
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if config_path.exists():
        with config_path.open() as f:
            data = yaml.safe_load(f) or {}
    else:
        # No config file: environment variables must supply everything
        data = {}

    overridden = _apply_env_overrides(data)

    if not overridden.get("llm"):
        raise FileNotFoundError(
            f"Configuration file not found at {config_path} and no QUICKEDIT_* environment variables set.\n"
            "Either create a config file or set environment variables."
        )

    return Config(**overridden)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration data.

    Environment variables use the format: QUICKEDIT_SECTION_KEY
    For example: QUICKEDIT_LLM_ENDPOINT sets data['llm']['endpoint']

    Args:
        data: Base configuration dictionary from YAML

    Returns:
        Configuration dictionary with environment overrides applied
    """
    for section in ("llm", "siyuan", "edit"):
        if not isinstance(data.get(section), dict):
            data[section] = {}

    if env_endpoint := os.getenv("QUICKEDIT_LLM_ENDPOINT"):
        data["llm"]["endpoint"] = env_endpoint

    if env_api_key := os.getenv("QUICKEDIT_LLM_API_KEY"):
        data["llm"]["api_key"] = env_api_key

    if env_model := os.getenv("QUICKEDIT_LLM_MODEL"):
        data["llm"]["model"] = env_model

    if env_siyuan := os.getenv("QUICKEDIT_SIYUAN_ENDPOINT"):
        data["siyuan"]["endpoint"] = env_siyuan

    if env_token := os.getenv("QUICKEDIT_SIYUAN_TOKEN"):
        data["siyuan"]["token"] = env_token

    if env_concurrent := os.getenv("QUICKEDIT_EDIT_MAX_CONCURRENT"):
        try:
            data["edit"]["max_concurrent"] = int(env_concurrent)
        except ValueError:
            pass  # Invalid value, ignore

    if env_history := os.getenv("QUICKEDIT_EDIT_HISTORY_SIZE"):
        try:
            data["edit"]["history_size"] = int(env_history)
        except ValueError:
            pass  # Invalid value, ignore

    return data
