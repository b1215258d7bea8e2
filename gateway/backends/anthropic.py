"""
Anthropic backend — Claude via the official `anthropic` SDK.

System turns (system_prompt and any system-role history) are lifted into
the Messages API `system` parameter. max_tokens is required by the API,
so the configured default (4096) applies when the request has none.

Usage:
    from gateway.backends.anthropic import AnthropicBackend

    backend = AnthropicBackend({"default_model": "claude-3-haiku-20240307"})
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

from gateway.backends.base import BaseBackend, ModelCall, ModelResult, parse_tool_arguments
from gateway.backends.clients import AnthropicMessagesClient
from gateway.backends.config import AnthropicBackendConfig, load_backend_config
from gateway.backends.messages import ANTHROPIC_STOP_REASONS, split_system
from gateway.backends.tools import to_anthropic_tool
from gateway.contracts.models import ToolCall, Usage

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


def _tool_choice(choice: Any) -> Any:
    if isinstance(choice, dict):
        return choice
    if choice in ("auto", "any", "none"):
        return {"type": choice}
    if choice == "required":
        return {"type": "any"}
    return {"type": "tool", "name": str(choice)}


class AnthropicDriver:
    """Translates ModelCall <-> Messages API."""

    def __init__(self, client: AnthropicMessagesClient, *, max_tokens: int = DEFAULT_MAX_TOKENS):
        self._client = client
        self._max_tokens = max_tokens

    def request_kwargs(self, call: ModelCall) -> dict[str, Any]:
        sampling = call.sampling
        system, messages = split_system(call.messages)

        kwargs: dict[str, Any] = {
            "model": call.model,
            "max_tokens": sampling.max_tokens or self._max_tokens,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system

        optional = {
            "temperature": sampling.temperature,
            "top_p": sampling.top_p,
            "top_k": sampling.top_k,
            "stop_sequences": sampling.stop,
        }
        kwargs.update({k: v for k, v in optional.items() if v is not None})

        if call.tools:
            kwargs["tools"] = [to_anthropic_tool(t) for t in call.tools]
            if sampling.tool_choice is not None:
                kwargs["tool_choice"] = _tool_choice(sampling.tool_choice)

        if sampling.provider_options:
            kwargs["extra_body"] = dict(sampling.provider_options)

        return kwargs

    async def complete(self, call: ModelCall) -> ModelResult:
        response = await self._client.create(**self.request_kwargs(call))

        text_parts = []
        tool_calls = []
        for block in response.content:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text_parts.append(block.text)
            elif block_type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=parse_tool_arguments(block.input),
                ))

        usage = response.usage
        cache_counts = {
            "cache_read_input_tokens": getattr(usage, "cache_read_input_tokens", None),
            "cache_creation_input_tokens": getattr(usage, "cache_creation_input_tokens", None),
        }

        return ModelResult(
            text="".join(text_parts),
            finish_reason=response.stop_reason,
            usage=Usage(
                prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
                completion_tokens=getattr(usage, "output_tokens", 0) or 0,
                extra={k: v for k, v in cache_counts.items() if v is not None},
            ),
            tool_calls=tool_calls,
            metadata={"anthropic_id": response.id, "raw_finish_reason": response.stop_reason},
        )

    async def stream(self, call: ModelCall) -> AsyncIterator[str]:
        async for text_chunk in self._client.stream(**self.request_kwargs(call)):
            yield text_chunk


class AnthropicBackend(BaseBackend):
    """Single-provider Claude adapter. Unmapped stop reasons become "stop"."""

    name = "anthropic"
    finish_reasons = ANTHROPIC_STOP_REASONS

    def __init__(self, config: Any = None, *, client: Optional[AnthropicMessagesClient] = None):
        self.config = load_backend_config(AnthropicBackendConfig, config)
        client = client or AnthropicMessagesClient.from_config(self.config)
        super().__init__(
            AnthropicDriver(client, max_tokens=self.config.max_tokens),
            self.config.default_model,
        )


def create_anthropic_backend(config: Any = None, **kwargs: Any) -> AnthropicBackend:
    return AnthropicBackend(config, **kwargs)
