"""Completion gateway - the boundary between workflows and text generation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class CompletionResponse:
    """Result of a completion call: content on success, error text on failure."""

    content: str = ""
    error: str | None = None
    model: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


class CompletionGateway(ABC):
    """
    Abstract completion gateway - turns a prompt into generated text.

    Implementations must never raise for provider failures; they report
    them through CompletionResponse.error instead.
    """

    @abstractmethod
    async def complete(
        self,
        provider: str,
        model: str,
        prompt: str,
        credentials: str | None,
        parameters: dict[str, Any] | None = None,
    ) -> CompletionResponse:
        """
        Generate a completion for a single prompt.

        Args:
            provider: Provider id (see contextflow.llm.providers.PROVIDERS)
            model: Provider-specific model id
            prompt: Full prompt text
            credentials: API key, or None for providers that need none
            parameters: Sampling parameters (temperature, max_tokens, ...)

        Returns:
            CompletionResponse with content or error
        """
        pass
