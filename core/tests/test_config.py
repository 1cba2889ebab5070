"""Tests for configuration loading and WorkflowSettings."""

import json

import pytest

from contextflow.config import (
    WorkflowSettings,
    get_active_provider,
    get_api_key,
    get_auto_execute,
    get_config_path,
    get_contextflow_config,
    get_model_id,
)
from contextflow.graph.errors import ConfigurationError


@pytest.fixture
def write_config(isolated_home):
    def write(data) -> None:
        isolated_home.mkdir(parents=True, exist_ok=True)
        text = data if isinstance(data, str) else json.dumps(data)
        (isolated_home / "configuration.json").write_text(text)

    return write


class TestConfigFile:
    def test_path_follows_env(self, isolated_home):
        assert get_config_path() == isolated_home / "configuration.json"

    def test_missing_file_gives_defaults(self):
        assert get_contextflow_config() == {}
        assert get_active_provider() == "openrouter"
        assert get_model_id() == ""
        assert get_auto_execute() is False

    def test_unreadable_file_is_ignored(self, write_config):
        write_config("{not json")
        assert get_contextflow_config() == {}

    def test_non_object_is_ignored(self, write_config):
        write_config([1, 2, 3])
        assert get_contextflow_config() == {}

    def test_values(self, write_config):
        write_config(
            {
                "llm": {"provider": "gemini", "model": "gemini-1.5-flash"},
                "workflow": {"auto_execute": True},
            }
        )
        assert get_active_provider() == "gemini"
        assert get_model_id() == "gemini-1.5-flash"
        assert get_auto_execute() is True


class TestApiKey:
    def test_config_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        config = {"llm": {"api_keys": {"openai": "from-config"}}}
        assert get_api_key("openai", config) == "from-config"

    def test_custom_env_var_for_active_provider(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "custom")
        monkeypatch.setenv("OPENROUTER_API_KEY", "standard")
        config = {"llm": {"provider": "openrouter", "api_key_env_var": "MY_KEY"}}

        assert get_api_key("openrouter", config) == "custom"

    def test_custom_env_var_ignored_for_other_providers(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "custom")
        config = {"llm": {"provider": "openrouter", "api_key_env_var": "MY_KEY"}}
        assert get_api_key("openai", config) is None

    def test_standard_env_var(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "g-key")
        assert get_api_key("gemini", {}) == "g-key"

    def test_local_needs_no_key(self):
        assert get_api_key("local", {}) is None


class TestWorkflowSettings:
    def test_load(self, write_config, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        write_config({"llm": {"provider": "openai", "model": "gpt-4o-mini"}})

        settings = WorkflowSettings.load()

        assert settings.active_provider == "openai"
        assert settings.model_id == "gpt-4o-mini"
        assert settings.credentials == "sk-env"
        assert settings.auto_execute is False
        settings.validate()

    def test_credentials_resolved_when_omitted(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        settings = WorkflowSettings(active_provider="openai", model_id="m")
        assert settings.credentials == "sk-env"

    def test_validate_unknown_provider(self):
        settings = WorkflowSettings(active_provider="nope", model_id="m", credentials="k")
        with pytest.raises(ConfigurationError, match="provider 'nope' not found"):
            settings.validate()

    def test_validate_missing_model(self):
        settings = WorkflowSettings(active_provider="openai", model_id="", credentials="k")
        with pytest.raises(ConfigurationError, match="No model selected for OpenAI"):
            settings.validate()

    def test_validate_missing_key(self):
        settings = WorkflowSettings(active_provider="openrouter", model_id="m")
        with pytest.raises(ConfigurationError, match="API key required for openrouter provider"):
            settings.validate()

    def test_validate_local_without_key(self):
        WorkflowSettings(active_provider="local", model_id="llama3").validate()
