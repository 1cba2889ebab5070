"""Shared contextflow configuration utilities.

Centralises reading of ~/.contextflow/configuration.json (or the file named
by CONTEXTFLOW_CONFIG) so the CLI and the executor share one
implementation.

Example configuration.json:

    {
      "llm": {
        "provider": "openrouter",
        "model": "meta-llama/llama-3.1-8b-instruct",
        "api_key_env_var": "MY_OPENROUTER_KEY",
        "api_keys": {"gemini": "..."}
      },
      "workflow": {"auto_execute": true}
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from contextflow.graph.errors import ConfigurationError
from contextflow.llm.providers import PROVIDERS, get_provider

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

CONTEXTFLOW_HOME = Path.home() / ".contextflow"
CONTEXTFLOW_CONFIG_FILE = CONTEXTFLOW_HOME / "configuration.json"

DEFAULT_PROVIDER = "openrouter"


def get_config_path() -> Path:
    override = os.environ.get("CONTEXTFLOW_CONFIG")
    return Path(override).expanduser() if override else CONTEXTFLOW_CONFIG_FILE


def get_contextflow_config() -> dict[str, Any]:
    """Load configuration; a missing or unreadable file yields {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable configuration {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring configuration {path}: top level is not an object")
        return {}
    return data


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_active_provider(config: dict[str, Any] | None = None) -> str:
    config = get_contextflow_config() if config is None else config
    return config.get("llm", {}).get("provider") or DEFAULT_PROVIDER


def get_model_id(config: dict[str, Any] | None = None) -> str:
    config = get_contextflow_config() if config is None else config
    return config.get("llm", {}).get("model") or ""


def get_api_key(provider: str, config: dict[str, Any] | None = None) -> str | None:
    """
    Resolve the API key for a provider.

    Priority:
    1. llm.api_keys.<provider> in the configuration file
    2. The env var named by llm.api_key_env_var (active provider only)
    3. The provider's standard env var (e.g. OPENAI_API_KEY)
    """
    config = get_contextflow_config() if config is None else config
    llm = config.get("llm", {})

    key = (llm.get("api_keys") or {}).get(provider)
    if key:
        return key

    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var and provider == get_active_provider(config):
        key = os.environ.get(api_key_env_var)
        if key:
            return key

    info = PROVIDERS.get(provider)
    if info and info.api_key_env_var:
        return os.environ.get(info.api_key_env_var)
    return None


def get_auto_execute(config: dict[str, Any] | None = None) -> bool:
    config = get_contextflow_config() if config is None else config
    return bool(config.get("workflow", {}).get("auto_execute", False))


# ---------------------------------------------------------------------------
# WorkflowSettings - what the executor reads
# ---------------------------------------------------------------------------


@dataclass
class WorkflowSettings:
    """Provider settings loaded from the configuration file and environment."""

    active_provider: str = field(default_factory=get_active_provider)
    model_id: str = field(default_factory=get_model_id)
    credentials: str | None = None
    auto_execute: bool = field(default_factory=get_auto_execute)

    def __post_init__(self) -> None:
        if self.credentials is None:
            self.credentials = get_api_key(self.active_provider)

    @classmethod
    def load(cls) -> "WorkflowSettings":
        """Read the configuration file once and build settings from it."""
        config = get_contextflow_config()
        provider = get_active_provider(config)
        return cls(
            active_provider=provider,
            model_id=get_model_id(config),
            credentials=get_api_key(provider, config),
            auto_execute=get_auto_execute(config),
        )

    def validate(self) -> None:
        """
        Check that a run can reach the configured provider.

        Raises:
            ConfigurationError: Unknown provider, missing model, or missing
                API key for a provider that requires one
        """
        if not self.active_provider:
            raise ConfigurationError("No AI provider configured")
        info = get_provider(self.active_provider)
        if not self.model_id:
            raise ConfigurationError(f"No model selected for {info.display_name}")
        if info.requires_api_key and not self.credentials:
            raise ConfigurationError(f"API key required for {self.active_provider} provider")
