"""Mock completion gateway for tests and dry runs."""

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from contextflow.llm.gateway import CompletionGateway, CompletionResponse


@dataclass
class RecordedCall:
    provider: str
    model: str
    prompt: str
    credentials: str | None
    parameters: dict[str, Any] = field(default_factory=dict)


ResponseHandler = Callable[[str], "str | CompletionResponse"]


class MockGateway(CompletionGateway):
    """
    Gateway that answers without any network access.

    Responses are chosen in this order: the handler (if given), then the
    scripted responses (consumed in order), then the default text. A
    scripted or handled value may be a plain string or a full
    CompletionResponse (use one with `error` set to simulate a failure).
    """

    def __init__(
        self,
        default: str = "Mock response",
        responses: Iterable[str | CompletionResponse] | None = None,
        handler: ResponseHandler | None = None,
        delay: float = 0.0,
    ):
        self.default = default
        self.responses = list(responses or [])
        self.handler = handler
        self.delay = delay
        self.calls: list[RecordedCall] = []

    @property
    def prompts(self) -> list[str]:
        return [call.prompt for call in self.calls]

    async def complete(
        self,
        provider: str,
        model: str,
        prompt: str,
        credentials: str | None,
        parameters: dict[str, Any] | None = None,
    ) -> CompletionResponse:
        self.calls.append(
            RecordedCall(provider, model, prompt, credentials, dict(parameters or {}))
        )
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.handler is not None:
            result = self.handler(prompt)
        elif self.responses:
            result = self.responses.pop(0)
        else:
            result = self.default

        if isinstance(result, CompletionResponse):
            return result
        return CompletionResponse(content=result, model=model or "mock")
