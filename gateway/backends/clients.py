"""
Narrow provider-client wrappers.

Adapters never touch a provider SDK directly; they talk to these wrappers,
which expose only the calls the gateway makes. Tests substitute fakes with
the same methods (or an httpx.MockTransport for Ollama).

    OpenAIChatClient         chat.completions.create (plain + streamed)
    AnthropicMessagesClient  messages.create + messages.stream text deltas
    OllamaClient             POST /api/chat (plain + NDJSON stream), GET /api/tags
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncAzureOpenAI, AsyncOpenAI

from gateway.backends.config import (
    AnthropicBackendConfig,
    BackendConfig,
    OllamaBackendConfig,
    OpenAIBackendConfig,
    resolve_api_key,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# OpenAI (and OpenAI-compatible endpoints)
# ---------------------------------------------------------------------------

class OpenAIChatClient:
    """Chat Completions over AsyncOpenAI / AsyncAzureOpenAI."""

    def __init__(self, sdk_client: Any):
        self._client = sdk_client

    @classmethod
    def from_config(cls, config: BackendConfig, *, provider: str = "openai") -> "OpenAIChatClient":
        kwargs: dict[str, Any] = {}
        if config.timeout is not None:
            kwargs["timeout"] = config.timeout

        if isinstance(config, OpenAIBackendConfig) and config.is_azure:
            sdk_client = AsyncAzureOpenAI(
                api_key=resolve_api_key(config.api_key, "azure"),
                azure_endpoint=config.azure_endpoint,
                azure_deployment=config.azure_deployment,
                api_version=config.azure_api_version,
                **kwargs,
            )
            return cls(sdk_client)

        if isinstance(config, OpenAIBackendConfig) and config.organization:
            kwargs["organization"] = config.organization

        sdk_client = AsyncOpenAI(
            api_key=resolve_api_key(config.api_key, provider),
            base_url=config.base_url,
            **kwargs,
        )
        return cls(sdk_client)

    async def complete(self, **kwargs: Any) -> Any:
        return await self._client.chat.completions.create(**kwargs)

    async def stream(self, **kwargs: Any) -> AsyncIterator[Any]:
        response_stream = await self._client.chat.completions.create(stream=True, **kwargs)
        async for chunk in response_stream:
            yield chunk


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicMessagesClient:
    """Messages API over AsyncAnthropic."""

    def __init__(self, sdk_client: Any):
        self._client = sdk_client

    @classmethod
    def from_config(cls, config: AnthropicBackendConfig) -> "AnthropicMessagesClient":
        kwargs: dict[str, Any] = {}
        if config.timeout is not None:
            kwargs["timeout"] = config.timeout
        if config.base_url:
            kwargs["base_url"] = config.base_url
        return cls(AsyncAnthropic(api_key=resolve_api_key(config.api_key, "anthropic"), **kwargs))

    async def create(self, **kwargs: Any) -> Any:
        return await self._client.messages.create(**kwargs)

    async def stream(self, **kwargs: Any) -> AsyncIterator[str]:
        async with self._client.messages.stream(**kwargs) as stream:
            async for text_chunk in stream.text_stream:
                yield text_chunk


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

class OllamaClient:
    """
    Minimal Ollama HTTP client.

    Owns one httpx.AsyncClient for its lifetime; call aclose() when done.
    Non-2xx responses raise httpx.HTTPStatusError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_config(
        cls,
        config: OllamaBackendConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OllamaClient":
        return cls(config.resolved_base_url(), timeout=config.timeout, transport=transport)

    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self._http.post("/api/chat", json={**payload, "stream": False})
        resp.raise_for_status()
        return resp.json()

    async def stream_chat(self, payload: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        async with self._http.stream(
            "POST", "/api/chat", json={**payload, "stream": True}
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("ollama_stream_bad_line", extra={"line": line[:100]})
                    continue
                yield data
                if data.get("done", False):
                    break

    async def list_models(self) -> list[str]:
        resp = await self._http.get("/api/tags")
        resp.raise_for_status()
        return [m["name"] for m in resp.json().get("models", []) if "name" in m]

    async def aclose(self) -> None:
        await self._http.aclose()
