"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from activity_digest import config as config_mod
from activity_digest.config import LLMSettings, Settings, load_settings
from activity_digest.exceptions import ConfigurationError


@pytest.fixture
def write_config(tmp_path: Path):
    def _write(text: str) -> Path:
        path = tmp_path / "config.yaml"
        path.write_text(text, encoding="utf-8")
        return path
    return _write


class TestLoadSettings:

    def test_missing_default_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_mod, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
        settings = load_settings()
        assert settings.llm.provider == "anthropic"
        assert settings.llm.use_agent is True
        assert settings.llm.max_diff_fetches == 5
        assert settings.llm.max_diff_bytes == 10 * 1024
        assert settings.llm.max_total_tokens == 100_000

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "absent.yaml")

    def test_yaml_values(self, write_config, tmp_path):
        path = write_config(
            f"data_dir: {tmp_path / 'data'}\n"
            "llm:\n"
            "  provider: OpenAI\n"
            "  model: gpt-4o\n"
            "  use_agent: false\n"
            "  max_diff_fetches: 3\n"
            "  max_diff_size_kb: 4\n"
        )
        settings = load_settings(path)
        assert settings.llm.provider == "openai"
        assert settings.llm.model == "gpt-4o"
        assert settings.llm.use_agent is False
        assert settings.llm.max_diff_fetches == 3
        assert settings.llm.max_diff_bytes == 4096
        assert settings.get_database_url() == f"sqlite:///{tmp_path / 'data' / 'activity.db'}"

    def test_empty_file(self, write_config):
        assert load_settings(write_config("")).llm.provider == "anthropic"

    def test_invalid_yaml(self, write_config):
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_settings(write_config("llm: [unclosed\n"))

    def test_not_a_mapping(self, write_config):
        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(write_config("- a\n- b\n"))

    def test_unsupported_provider(self, write_config):
        with pytest.raises(ConfigurationError, match="unsupported provider"):
            load_settings(write_config("llm:\n  provider: watson\n"))

    def test_wrong_type(self, write_config):
        with pytest.raises(ConfigurationError):
            load_settings(write_config("llm:\n  max_diff_fetches: lots\n"))


class TestSettings:

    def test_data_dir_expands_home(self):
        settings = Settings(data_dir="~/activity-data")
        assert settings.data_dir == Path.home() / "activity-data"

    def test_explicit_database_url(self):
        assert Settings(database_url="sqlite://").get_database_url() == "sqlite://"


class TestApiKey:

    def test_literal_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "env-key")
        assert LLMSettings(provider="openai", api_key="literal").resolve_api_key() == "literal"

    def test_provider_env_var(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        assert LLMSettings(provider="gemini").resolve_api_key() == "g-key"

    def test_custom_env_var(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "custom")
        assert LLMSettings(provider="openai", api_key_env="MY_KEY").resolve_api_key() == "custom"

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            LLMSettings(provider="openai").resolve_api_key()

    def test_ollama_needs_no_key(self):
        assert LLMSettings(provider="ollama").resolve_api_key() == ""
