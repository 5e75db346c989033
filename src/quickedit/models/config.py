"""Configuration models for quickedit."""

from pydantic import BaseModel, Field, HttpUrl, field_validator
from pathlib import Path
from typing import Optional
import yaml
import os
import stat


class LLMConfig(BaseModel):
    """Configuration for the generation service connection."""

    endpoint: HttpUrl = Field(
        ...,
        description="LLM API endpoint URL (OpenAI or Ollama compatible)"
    )

    api_key: str = Field(
        ...,
        description="API key for authentication"
    )

    model: str = Field(
        ...,
        description="Model identifier (e.g., 'gpt-4o-mini', 'qwen2.5:7b')"
    )

    num_ctx: int = Field(
        default=32768,
        ge=1024,
        description="Context window size (Ollama-specific, controls VRAM usage)"
    )

    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature"
    )

    model_config = {"frozen": True}


class SiyuanConfig(BaseModel):
    """Configuration for the SiYuan kernel API."""

    endpoint: HttpUrl = Field(
        default="http://127.0.0.1:6806",
        description="SiYuan kernel base URL"
    )

    token: str = Field(
        default="",
        description="API token (Settings > About > API token)"
    )

    model_config = {"frozen": True}


class FilterRuleConfig(BaseModel):
    """A regex rule applied to the completed response before review."""

    pattern: str = Field(..., description="Regular expression to match")
    replacement: str = Field(default="", description="Replacement text")
    flags: str = Field(default="g", description="Regex flags: g, i, m, s")
    enabled: bool = Field(default=True, description="Whether the rule runs")
    description: str = Field(default="", description="Human-readable label")

    model_config = {"frozen": True}


class EditConfig(BaseModel):
    """Edit engine tuning and prompt settings."""

    max_concurrent: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Maximum number of sessions generating at once"
    )

    history_size: int = Field(
        default=50,
        ge=1,
        le=100,
        description="Number of committed edits kept for undo"
    )

    batch_threshold: int = Field(
        default=10,
        ge=1,
        description="Segment count above which batch store calls are used"
    )

    insert_settle_delay: float = Field(
        default=0.3,
        ge=0.0,
        description="Seconds to wait after insertions before removing the preview"
    )

    delete_settle_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Seconds to wait after deletions before resuming the observer"
    )

    prompt_template: Optional[str] = Field(
        default=None,
        description="User prompt template ({instruction}, {original}, {above=N}, ...)"
    )

    system_prompt: Optional[str] = Field(
        default=None,
        description="System prompt sent with every request"
    )

    appended_prompt: Optional[str] = Field(
        default=None,
        description="Text appended after the rendered template"
    )

    filter_rules: list[FilterRuleConfig] = Field(
        default_factory=list,
        description="Response filter rules"
    )

    model_config = {"frozen": True}


class Config(BaseModel):
    """Root configuration for quickedit."""

    llm: LLMConfig = Field(..., description="Generation service settings")
    siyuan: SiyuanConfig = Field(default_factory=SiyuanConfig, description="SiYuan kernel settings")
    edit: EditConfig = Field(default_factory=EditConfig, description="Edit engine settings")

    @field_validator('siyuan', mode='before')
    @classmethod
    def default_siyuan(cls, v):
        """Treat an empty ``siyuan:`` section as defaults."""
        return v or {}

    @classmethod
    def load(cls, path: Path) -> "Config":
        """
        Load configuration from YAML file.

        Validates file permissions before loading.
        Raises PermissionError if file is group/world readable.

        Args:
            path: Path to config.yaml file

        Returns:
            Validated Config instance

        Raises:
            PermissionError: If file permissions are too open
            FileNotFoundError: If config file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        if not path.exists():
            raise FileNotFoundError(
                f"Configuration file not found at {path}\n\n"
                f"Please create the file with the following format:\n\n"
                f"llm:\n"
                f"  endpoint: https://api.openai.com/v1\n"
                f"  api_key: YOUR_API_KEY_HERE\n"
                f"  model: gpt-4o-mini\n\n"
                f"siyuan:\n"
                f"  endpoint: http://127.0.0.1:6806\n"
                f"  token: YOUR_SIYUAN_TOKEN\n\n"
                f"edit:\n"
                f"  max_concurrent: 1\n"
            )

        # Must be 600: the file holds API keys
        mode = os.stat(path).st_mode
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            raise PermissionError(
                f"Config file has overly permissive permissions: {oct(mode)}\n"
                f"Run: chmod 600 {path}"
            )

        with open(path) as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a YAML mapping")

        return cls(**data)

    model_config = {"frozen": True}
