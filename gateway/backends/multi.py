"""
Multi-Provider Backend — one adapter, many providers, selected per request.

A model id names both provider and model ("anthropic:claude-3-haiku").
Ids without the separator get the provider prefix of default_model, so
with default_model="openai:gpt-4o" a bare "gpt-4o-mini" means
"openai:gpt-4o-mini".

Compared with the single-provider adapters this one is stricter:

- calls are serialized through a RequestQueue with a minimum gap
  (rate_limit_ms) so bursts of tool-augmented turns do not trip
  provider rate limits
- tool names and schemas are sanitized before dispatch; every change is
  logged and reported in metadata["tool_repairs"]. Tool calls in the
  response carry the caller's original names again
- unmapped finish reasons become "error" instead of "stop"
- empty text with tool calls finishes as "tool_calls"; empty text without
  them is forced to "error" with a placeholder message

Usage:
    from gateway.backends.multi import MultiProviderBackend

    backend = MultiProviderBackend({
        "default_model": "openai:gpt-4o",
        "rate_limit_ms": 250,
        "anthropic": {"api_key": "..."},
    })
    response = await backend.generate(
        create_request(prompt="hello", parameters={"model": "anthropic:claude-3-haiku"})
    )
    response.metadata["provider"]   # "anthropic"
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Optional

from gateway.backends.base import BaseBackend, ModelCall, ModelResult, error_response
from gateway.backends.config import MultiProviderBackendConfig, load_backend_config
from gateway.backends.messages import MULTI_PROVIDER_FINISH_REASONS, build_messages
from gateway.backends.registry import (
    ProviderFactory,
    ProviderRegistry,
    RequestQueue,
    default_provider_factories,
)
from gateway.backends.tools import prepare_tools, tool_name_map
from gateway.contracts.models import FinishReason, GenerateRequest, GenerateResponse, PartialResponse
from gateway.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

EMPTY_COMPLETION_TEXT = "[The model returned an empty response]"


class MultiProviderBackend(BaseBackend):
    """Registry-backed adapter over OpenAI, Anthropic, Google and Ollama."""

    name = "multi-provider"
    finish_reasons = MULTI_PROVIDER_FINISH_REASONS
    unknown_finish_reason = FinishReason.ERROR
    empty_output_text = EMPTY_COMPLETION_TEXT

    def __init__(
        self,
        config: Any = None,
        *,
        factories: Optional[dict[str, ProviderFactory]] = None,
    ):
        self.config = load_backend_config(MultiProviderBackendConfig, config)
        self.registry = ProviderRegistry(
            factories if factories is not None else default_provider_factories(),
            self.config.provider_configs(),
            separator=self.config.separator,
        )
        self.queue = RequestQueue(self.config.rate_limit_ms)
        self.default_model = self.config.default_model

    # --- Model resolution ---

    def resolve_model(self, request: GenerateRequest) -> str:
        raw_model = request.sampling().model or self.config.default_model
        separator = self.config.separator
        if separator in raw_model:
            return raw_model
        default_prefix = self.config.default_model.split(separator)[0] or "openai"
        return f"{default_prefix}{separator}{raw_model}"

    def _prepare(
        self, request: GenerateRequest, routed_to: str
    ) -> tuple[Any, ModelCall, dict[str, Any]]:
        model_id = self.resolve_model(request)
        provider, model, driver = self.registry.resolve(model_id)

        tools, repairs = prepare_tools(request.tools)
        call = ModelCall(
            model=model,
            messages=build_messages(request),
            sampling=request.sampling(),
            tools=[tool.to_dict() for tool in tools],
        )

        metadata: dict[str, Any] = {
            "backend": self.name,
            "provider": provider,
            "model": model_id,
            "routed_to": routed_to,
        }
        if repairs:
            metadata["tool_repairs"] = repairs

        logger.debug(
            "multi_provider_dispatch",
            extra={"provider": provider, "model": model, "tools": len(tools)},
        )
        return driver, call, metadata

    # --- Generation ---

    async def generate(
        self, request: GenerateRequest, *, routed_to: str = "direct"
    ) -> GenerateResponse:
        rejected = self._reject_request_model(request, routed_to)
        if rejected is not None:
            return rejected

        driver, call, metadata = self._prepare(request, routed_to)
        return await self._invoke(request, call, metadata, driver.complete, run=self.queue.run)

    def _reject_request_model(
        self, request: GenerateRequest, routed_to: str
    ) -> Optional[GenerateResponse]:
        """
        Error response for a per-request model id that names no registered provider.

        Bare model ids take the default_model prefix, so a bad prefix there is
        misconfiguration and still raises from _prepare().
        """
        raw_model = request.sampling().model
        if not raw_model or self.config.separator not in raw_model:
            return None

        provider = raw_model.split(self.config.separator)[0]
        try:
            provider, _ = self.registry.split(raw_model)
            if provider not in self.registry:
                raise ConfigurationError(
                    f"Unknown provider '{provider}'. Available: {', '.join(self.registry.providers)}",
                    context={"provider": provider, "model": raw_model},
                )
        except ConfigurationError as err:
            logger.warning(
                "multi_provider_model_rejected",
                extra={"provider": provider, "model": raw_model, "request_id": request.id},
            )
            return error_response(
                request,
                err,
                0,
                {"backend": self.name, "provider": provider, "model": raw_model, "routed_to": routed_to},
            )
        return None

    async def generate_stream(
        self, request: GenerateRequest, *, routed_to: str = "direct"
    ) -> AsyncIterator[PartialResponse]:
        driver, call, metadata = self._prepare(request, routed_to)
        await self.queue.wait_turn()
        async for partial in self._accumulate(driver.stream(call), metadata):
            yield partial

    def map_finish_reason(self, raw: Optional[str], result: ModelResult) -> FinishReason:
        reason = super().map_finish_reason(raw, result)
        if result.tool_calls and not result.text and reason == FinishReason.STOP:
            return FinishReason.TOOL_CALLS
        return reason

    def build_response(
        self,
        request: GenerateRequest,
        result: ModelResult,
        latency_ms: int,
        metadata: dict[str, Any],
    ) -> GenerateResponse:
        # Providers answer with the sanitized tool names
        names = tool_name_map(request.tools)
        if result.tool_calls and names:
            result = replace(
                result,
                tool_calls=[
                    call.model_copy(update={"name": names.get(call.name, call.name)})
                    for call in result.tool_calls
                ],
            )
        return super().build_response(request, result, latency_ms, metadata)


def create_multi_provider_backend(config: Any = None, **kwargs: Any) -> MultiProviderBackend:
    return MultiProviderBackend(config, **kwargs)
