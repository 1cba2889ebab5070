"""LiteLLM-backed completion gateway.

Maps the workflow provider ids onto LiteLLM model prefixes:
openrouter -> openrouter/, openai -> openai/, gemini -> gemini/,
local -> ollama/ (http://localhost:11434).
"""

import logging
from typing import Any

import litellm

from contextflow.graph.errors import ConfigurationError
from contextflow.llm.gateway import CompletionGateway, CompletionResponse
from contextflow.llm.providers import get_provider

logger = logging.getLogger(__name__)


class LiteLLMGateway(CompletionGateway):
    """
    Completion gateway that routes every provider through litellm.acompletion.

    Example:
        gateway = LiteLLMGateway()
        response = await gateway.complete("openai", "gpt-4o-mini", "Hello", api_key)
    """

    def __init__(
        self,
        api_base_overrides: dict[str, str] | None = None,
        timeout: float | None = 120.0,
        num_retries: int = 0,
    ):
        """
        Args:
            api_base_overrides: Per-provider API base URLs (e.g. a remote Ollama)
            timeout: Request timeout in seconds, passed through to LiteLLM
            num_retries: LiteLLM retry count for transient failures
        """
        self.api_base_overrides = api_base_overrides or {}
        self.timeout = timeout
        self.num_retries = num_retries

    def model_string(self, provider: str, model: str) -> str:
        info = get_provider(provider)
        prefix = f"{info.litellm_prefix}/"
        return model if model.startswith(prefix) else prefix + model

    async def complete(
        self,
        provider: str,
        model: str,
        prompt: str,
        credentials: str | None,
        parameters: dict[str, Any] | None = None,
    ) -> CompletionResponse:
        try:
            info = get_provider(provider)
        except ConfigurationError as e:
            return CompletionResponse(error=str(e))

        if info.requires_api_key and not credentials:
            return CompletionResponse(error=f"API key required for {provider} provider")
        if not model:
            return CompletionResponse(error=f"No model selected for {provider} provider")

        kwargs: dict[str, Any] = {
            "model": self.model_string(provider, model),
            "messages": [{"role": "user", "content": prompt}],
            "num_retries": self.num_retries,
        }
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        if credentials:
            kwargs["api_key"] = credentials
        api_base = self.api_base_overrides.get(provider) or info.api_base
        if api_base:
            kwargs["api_base"] = api_base
        for key, value in (parameters or {}).items():
            if value is not None:
                kwargs[key] = value

        logger.debug(f"Calling {kwargs['model']} ({len(prompt)} prompt chars)")
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.warning(f"Completion failed for {kwargs['model']}: {e}")
            return CompletionResponse(error=str(e), model=kwargs["model"])

        choices = getattr(response, "choices", None) or []
        content = (choices[0].message.content or "") if choices else ""
        if not content.strip():
            return CompletionResponse(
                error=f"No response from {info.display_name}", model=kwargs["model"]
            )
        return CompletionResponse(content=content, model=getattr(response, "model", "") or model)
