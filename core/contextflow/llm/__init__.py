"""Completion gateways."""

from contextflow.llm.gateway import CompletionGateway, CompletionResponse
from contextflow.llm.litellm import LiteLLMGateway
from contextflow.llm.mock import MockGateway
from contextflow.llm.providers import PROVIDERS, ProviderInfo, get_provider, list_providers

__all__ = [
    "CompletionGateway",
    "CompletionResponse",
    "LiteLLMGateway",
    "MockGateway",
    "PROVIDERS",
    "ProviderInfo",
    "get_provider",
    "list_providers",
]
