"""Tests for the completion gateways and the provider catalog."""

from types import SimpleNamespace

import litellm
import pytest

from contextflow.graph.errors import ConfigurationError
from contextflow.llm.gateway import CompletionResponse
from contextflow.llm.litellm import LiteLLMGateway
from contextflow.llm.mock import MockGateway
from contextflow.llm.providers import get_provider, list_providers


def fake_response(content, model="openai/gpt-test"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model=model,
    )


class FakeAcompletion:
    """Stands in for litellm.acompletion and records the kwargs it got."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def acompletion(monkeypatch):
    fake = FakeAcompletion(result=fake_response("Paris"))
    monkeypatch.setattr(litellm, "acompletion", fake)
    return fake


# === PROVIDERS ===


class TestProviders:
    def test_catalog(self):
        assert list_providers() == ["openrouter", "openai", "gemini", "local"]
        assert get_provider("local").requires_api_key is False
        assert get_provider("local").api_base == "http://localhost:11434"
        assert get_provider("openai").api_key_env_var == "OPENAI_API_KEY"

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="provider 'nope' not found"):
            get_provider("nope")


# === LITELLM GATEWAY ===


class TestLiteLLMGateway:
    def test_model_string(self):
        gateway = LiteLLMGateway()
        assert (
            gateway.model_string("openrouter", "meta-llama/llama-3")
            == "openrouter/meta-llama/llama-3"
        )
        assert gateway.model_string("local", "llama3") == "ollama/llama3"
        assert gateway.model_string("openai", "openai/gpt-4o") == "openai/gpt-4o"

    @pytest.mark.asyncio
    async def test_successful_completion(self, acompletion):
        gateway = LiteLLMGateway(timeout=30)

        response = await gateway.complete(
            "openai", "gpt-test", "What is the capital?", "sk-test", {"temperature": 0.2}
        )

        assert response.ok
        assert response.content == "Paris"
        (kwargs,) = acompletion.calls
        assert kwargs["model"] == "openai/gpt-test"
        assert kwargs["messages"] == [{"role": "user", "content": "What is the capital?"}]
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["temperature"] == 0.2
        assert kwargs["timeout"] == 30
        assert "api_base" not in kwargs

    @pytest.mark.asyncio
    async def test_local_provider_uses_ollama_base(self, acompletion):
        response = await LiteLLMGateway().complete("local", "llama3", "hi", None)

        assert response.ok
        kwargs = acompletion.calls[0]
        assert kwargs["model"] == "ollama/llama3"
        assert kwargs["api_base"] == "http://localhost:11434"
        assert "api_key" not in kwargs

    @pytest.mark.asyncio
    async def test_api_base_override(self, acompletion):
        gateway = LiteLLMGateway(api_base_overrides={"local": "http://gpu-box:11434"})
        await gateway.complete("local", "llama3", "hi", None)
        assert acompletion.calls[0]["api_base"] == "http://gpu-box:11434"

    @pytest.mark.asyncio
    async def test_missing_key_is_reported_not_raised(self, acompletion):
        response = await LiteLLMGateway().complete("gemini", "gemini-pro", "hi", None)

        assert response.error == "API key required for gemini provider"
        assert acompletion.calls == []

    @pytest.mark.asyncio
    async def test_unknown_provider_is_reported(self, acompletion):
        response = await LiteLLMGateway().complete("nope", "m", "hi", "key")
        assert "not found" in response.error

    @pytest.mark.asyncio
    async def test_missing_model_is_reported(self, acompletion):
        response = await LiteLLMGateway().complete("openai", "", "hi", "key")
        assert response.error == "No model selected for openai provider"

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_error(self, acompletion):
        acompletion.error = RuntimeError("401 Unauthorized")

        response = await LiteLLMGateway().complete("openai", "gpt-test", "hi", "bad-key")

        assert not response.ok
        assert "401 Unauthorized" in response.error

    @pytest.mark.asyncio
    async def test_empty_content_is_error(self, acompletion):
        acompletion.result = fake_response("   ")
        response = await LiteLLMGateway().complete("openrouter", "m", "hi", "key")
        assert response.error == "No response from OpenRouter"

    @pytest.mark.asyncio
    async def test_none_parameters_are_dropped(self, acompletion):
        await LiteLLMGateway().complete("openai", "gpt-test", "hi", "key", {"top_p": None})
        assert "top_p" not in acompletion.calls[0]


# === MOCK GATEWAY ===


class TestMockGateway:
    @pytest.mark.asyncio
    async def test_scripted_then_default(self):
        gateway = MockGateway(default="fallback", responses=["one", CompletionResponse(error="x")])

        first = await gateway.complete("openai", "m", "p1", "k")
        second = await gateway.complete("openai", "m", "p2", "k")
        third = await gateway.complete("openai", "m", "p3", "k")

        assert first.content == "one"
        assert second.error == "x"
        assert third.content == "fallback"
        assert gateway.prompts == ["p1", "p2", "p3"]

    @pytest.mark.asyncio
    async def test_handler_wins(self):
        gateway = MockGateway(responses=["scripted"], handler=lambda prompt: prompt.upper())
        response = await gateway.complete("local", "", "echo", None)
        assert response.content == "ECHO"
        assert response.model == "mock"
