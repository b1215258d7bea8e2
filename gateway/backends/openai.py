"""
OpenAI backend — Chat Completions via the official `openai` SDK.

Also serves Azure OpenAI (set azure_endpoint / azure_api_version /
azure_deployment) and any OpenAI-compatible endpoint through base_url;
the multi-provider adapter uses this driver for Gemini's compatible API.

Usage:
    from gateway.backends.openai import OpenAIBackend

    backend = OpenAIBackend({"default_model": "gpt-4o-mini"})
    response = await backend.generate(request, routed_to="openai")
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

from gateway.backends.base import BaseBackend, ModelCall, ModelResult, parse_tool_arguments
from gateway.backends.clients import OpenAIChatClient
from gateway.backends.config import OpenAIBackendConfig, load_backend_config
from gateway.backends.messages import OPENAI_FINISH_REASONS
from gateway.backends.tools import to_openai_tool
from gateway.contracts.models import ToolCall, Usage

logger = logging.getLogger(__name__)


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return value


class OpenAIDriver:
    """Translates ModelCall <-> Chat Completions."""

    def __init__(self, client: OpenAIChatClient):
        self._client = client

    def request_kwargs(self, call: ModelCall) -> dict[str, Any]:
        sampling = call.sampling
        kwargs: dict[str, Any] = {"model": call.model, "messages": call.messages}

        optional = {
            "temperature": sampling.temperature,
            "top_p": sampling.top_p,
            "max_tokens": sampling.max_tokens,
            "frequency_penalty": sampling.frequency_penalty,
            "presence_penalty": sampling.presence_penalty,
            "stop": sampling.stop,
        }
        kwargs.update({k: v for k, v in optional.items() if v is not None})

        if call.tools:
            kwargs["tools"] = [to_openai_tool(t) for t in call.tools]
            if sampling.tool_choice is not None:
                kwargs["tool_choice"] = sampling.tool_choice

        if sampling.provider_options:
            kwargs["extra_body"] = dict(sampling.provider_options)

        return kwargs

    async def complete(self, call: ModelCall) -> ModelResult:
        completion = await self._client.complete(**self.request_kwargs(call))

        if not completion.choices:
            raise ValueError("No completion choices returned from OpenAI")
        choice = completion.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_tool_arguments(tc.function.arguments),
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        ]

        usage = completion.usage
        extra = {}
        if usage is not None:
            details = {
                "completion_tokens_details": getattr(usage, "completion_tokens_details", None),
                "prompt_tokens_details": getattr(usage, "prompt_tokens_details", None),
            }
            extra = {k: _dump(v) for k, v in details.items() if v is not None}

        return ModelResult(
            text=message.content or "",
            finish_reason=choice.finish_reason,
            usage=Usage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
                extra=extra,
            ),
            tool_calls=tool_calls,
            metadata={"openai_id": completion.id, "raw_finish_reason": choice.finish_reason},
        )

    async def stream(self, call: ModelCall) -> AsyncIterator[str]:
        async for chunk in self._client.stream(**self.request_kwargs(call)):
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content


class OpenAIBackend(BaseBackend):
    """Single-provider OpenAI adapter. Unmapped finish reasons become "stop"."""

    name = "openai"
    finish_reasons = OPENAI_FINISH_REASONS

    def __init__(self, config: Any = None, *, client: Optional[OpenAIChatClient] = None):
        self.config = load_backend_config(OpenAIBackendConfig, config)
        client = client or OpenAIChatClient.from_config(self.config)
        super().__init__(OpenAIDriver(client), self.config.default_model)


def create_openai_backend(config: Any = None, **kwargs: Any) -> OpenAIBackend:
    return OpenAIBackend(config, **kwargs)
