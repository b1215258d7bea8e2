"""
Ollama backend — local models over Ollama's HTTP API (/api/chat).

No API key. The base URL comes from config, then OLLAMA_BASE_URL, then
http://localhost:11434. Token counts come from prompt_eval_count and
eval_count; the duration counters (nanoseconds) land in usage.extra.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

from gateway.backends.base import BaseBackend, ModelCall, ModelResult, parse_tool_arguments
from gateway.backends.clients import OllamaClient
from gateway.backends.config import OllamaBackendConfig, load_backend_config
from gateway.backends.messages import OLLAMA_DONE_REASONS
from gateway.backends.tools import to_openai_tool
from gateway.contracts.models import ToolCall, Usage

logger = logging.getLogger(__name__)

_DURATION_FIELDS = ("total_duration", "load_duration", "prompt_eval_duration", "eval_duration")


class OllamaDriver:
    """Translates ModelCall <-> /api/chat payloads."""

    def __init__(self, client: OllamaClient, *, keep_alive: Optional[str] = None):
        self._client = client
        self._keep_alive = keep_alive

    def payload(self, call: ModelCall) -> dict[str, Any]:
        sampling = call.sampling
        options = {
            "temperature": sampling.temperature,
            "top_p": sampling.top_p,
            "top_k": sampling.top_k,
            "num_predict": sampling.max_tokens,
            "stop": sampling.stop,
        }
        options = {k: v for k, v in options.items() if v is not None}
        options.update(sampling.provider_options)

        payload: dict[str, Any] = {"model": call.model, "messages": call.messages}
        if options:
            payload["options"] = options
        if call.tools:
            payload["tools"] = [to_openai_tool(t) for t in call.tools]
        if self._keep_alive:
            payload["keep_alive"] = self._keep_alive
        return payload

    async def complete(self, call: ModelCall) -> ModelResult:
        data = await self._client.chat(self.payload(call))
        message = data.get("message") or {}

        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            tool_calls.append(ToolCall(
                id=tc.get("id"),
                name=function.get("name", "tool"),
                arguments=parse_tool_arguments(function.get("arguments")),
            ))

        done = data.get("done", True)
        raw_reason = data.get("done_reason") or ("stop" if done else "length")

        return ModelResult(
            text=message.get("content") or "",
            finish_reason=raw_reason,
            usage=Usage(
                prompt_tokens=data.get("prompt_eval_count") or 0,
                completion_tokens=data.get("eval_count") or 0,
                extra={k: data[k] for k in _DURATION_FIELDS if data.get(k) is not None},
            ),
            tool_calls=tool_calls,
            metadata={"raw_finish_reason": raw_reason},
        )

    async def stream(self, call: ModelCall) -> AsyncIterator[str]:
        async for data in self._client.stream_chat(self.payload(call)):
            text = (data.get("message") or {}).get("content")
            if text:
                yield text


class OllamaBackend(BaseBackend):
    """Single-provider Ollama adapter."""

    name = "ollama"
    finish_reasons = OLLAMA_DONE_REASONS

    def __init__(self, config: Any = None, *, client: Optional[OllamaClient] = None):
        self.config = load_backend_config(OllamaBackendConfig, config)
        self._client = client or OllamaClient.from_config(self.config)
        super().__init__(
            OllamaDriver(self._client, keep_alive=self.config.keep_alive),
            self.config.default_model,
        )

    async def list_models(self) -> list[str]:
        """Names of the models pulled into the local Ollama instance."""
        return await self._client.list_models()

    async def aclose(self) -> None:
        await self._client.aclose()


def create_ollama_backend(config: Any = None, **kwargs: Any) -> OllamaBackend:
    return OllamaBackend(config, **kwargs)
