"""Configuration loading for activity-digest.

Settings live in a YAML file (``~/.config/activity/config.yaml`` by
default).  A missing file yields defaults; every key is optional.

Example::

    data_dir: ~/.local/share/activity
    llm:
      provider: anthropic
      model: claude-sonnet-4-20250514
      api_key_env: ANTHROPIC_API_KEY
      use_agent: true
      max_diff_fetches: 5
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .agent.prompts import DEFAULT_AGENT_SYSTEM_PROMPT, DEFAULT_SUMMARY_PROMPT
from .exceptions import ConfigurationError

logger = logging.getLogger("activity.config")

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "activity" / "config.yaml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "activity"

# Provider → env-var holding its API key ("" = no key needed)
_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GOOGLE_API_KEY",
    "ollama": "",
}

SUPPORTED_PROVIDERS = tuple(_KEY_ENV_VARS)


class LLMSettings(BaseModel):
    """Model selection, analysis limits and agent budget."""

    provider: str = "anthropic"
    model: str = ""
    api_key: str = ""
    api_key_env: str = ""
    base_url: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 4096

    max_commits: int = 50
    max_message_length: int = 1000

    use_agent: bool = True
    max_diff_fetches: int = 5
    max_diff_size_kb: int = 10
    max_total_tokens: int = 100_000
    max_agent_turns: int = 25

    summary_prompt: str = ""
    agent_system_prompt: str = ""

    @field_validator("provider")
    @classmethod
    def _check_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in _KEY_ENV_VARS:
            raise ValueError(
                f"unsupported provider {v!r}; expected one of {', '.join(SUPPORTED_PROVIDERS)}"
            )
        return v

    @property
    def max_diff_bytes(self) -> int:
        return self.max_diff_size_kb * 1024

    def resolve_api_key(self) -> str:
        """Return the API key: the literal key first, then the env var.

        Raises
        ------
        ConfigurationError
            If the provider needs a key and none is available.
        """
        if self.api_key:
            return self.api_key
        env_var = self.api_key_env or _KEY_ENV_VARS[self.provider]
        if not env_var:
            return ""
        key = os.environ.get(env_var, "")
        if not key:
            raise ConfigurationError(
                f"API key not found: set llm.api_key or the {env_var} environment variable"
            )
        return key

    def get_summary_prompt(self) -> str:
        return self.summary_prompt or DEFAULT_SUMMARY_PROMPT

    def get_agent_system_prompt(self) -> str:
        template = self.agent_system_prompt or DEFAULT_AGENT_SYSTEM_PROMPT
        return template.replace("{max_diff_fetches}", str(self.max_diff_fetches))


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=lambda: DEFAULT_DATA_DIR)
    database_url: str = ""
    debug: bool = False
    llm: LLMSettings = Field(default_factory=LLMSettings)

    @field_validator("data_dir", mode="before")
    @classmethod
    def _expand_home(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    def get_database_url(self) -> str:
        """SQLAlchemy URL; defaults to ``<data_dir>/activity.db``."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'activity.db'}"


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults.

    An explicitly given path must exist; the default path may be absent.
    """
    explicit = config_path is not None
    path = Path(config_path).expanduser() if explicit else DEFAULT_CONFIG_PATH

    if not path.exists():
        if explicit:
            raise ConfigurationError(f"Config file not found: {path}")
        logger.debug("No config file at %s, using defaults", path)
        return Settings()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cannot parse config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config in {path}: {exc}") from exc

    logger.debug("Loaded config from %s (provider=%s)", path, settings.llm.provider)
    return settings
