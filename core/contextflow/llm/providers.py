"""Catalog of the completion providers a workflow can run against."""

from dataclasses import dataclass

from contextflow.graph.errors import ConfigurationError


@dataclass(frozen=True)
class ProviderInfo:
    """Static description of one completion provider."""

    id: str
    display_name: str
    litellm_prefix: str
    requires_api_key: bool = True
    api_key_env_var: str | None = None
    api_base: str | None = None


PROVIDERS: dict[str, ProviderInfo] = {
    "openrouter": ProviderInfo(
        id="openrouter",
        display_name="OpenRouter",
        litellm_prefix="openrouter",
        api_key_env_var="OPENROUTER_API_KEY",
    ),
    "openai": ProviderInfo(
        id="openai",
        display_name="OpenAI",
        litellm_prefix="openai",
        api_key_env_var="OPENAI_API_KEY",
    ),
    "gemini": ProviderInfo(
        id="gemini",
        display_name="Google Gemini",
        litellm_prefix="gemini",
        api_key_env_var="GEMINI_API_KEY",
    ),
    "local": ProviderInfo(
        id="local",
        display_name="Ollama (local)",
        litellm_prefix="ollama",
        requires_api_key=False,
        api_base="http://localhost:11434",
    ),
}


def get_provider(name: str) -> ProviderInfo:
    """Look up a provider by id.

    Raises:
        ConfigurationError: If no provider has that id
    """
    try:
        return PROVIDERS[name]
    except KeyError:
        raise ConfigurationError(f"provider '{name}' not found") from None


def list_providers() -> list[str]:
    return list(PROVIDERS)
