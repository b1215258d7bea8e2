"""
Shared adapter machinery.

Each provider is split in two:

- a driver that knows one provider's wire shape. It takes a ModelCall
  (model, messages, sampling, tools) and returns a ModelResult (text,
  raw finish reason, usage, tool calls). Drivers raise on failure.
- a backend (BaseBackend subclass) that resolves the model, projects the
  request, times the call, maps finish reasons and turns failures into
  error-shaped GenerateResponses.

The multi-provider adapter reuses the same drivers through its registry,
so each wire format is written exactly once.

Failure policy:
    ordinary provider failure   -> GenerateResponse(finish_reason="error")
    HTTP 401 / 403              -> BackendError (credentials will not fix themselves)
    GatewayError                -> re-raised unchanged
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

from gateway.backends.messages import build_messages, map_finish_reason
from gateway.contracts.models import (
    FinishReason,
    GenerateRequest,
    GenerateResponse,
    PartialResponse,
    SamplingParameters,
    ToolCall,
    Usage,
    create_response,
)
from gateway.exceptions import BackendError, GatewayError

logger = logging.getLogger(__name__)

FATAL_STATUS_CODES = frozenset({401, 403})


# ---------------------------------------------------------------------------
# Driver contract
# ---------------------------------------------------------------------------

@dataclass
class ModelCall:
    """Provider-neutral description of one model invocation."""

    model: str
    messages: list[dict[str, Any]]
    sampling: SamplingParameters = field(default_factory=SamplingParameters)
    tools: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ModelResult:
    """What a driver got back from its provider."""

    text: str = ""
    finish_reason: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class ProviderDriver(Protocol):
    async def complete(self, call: ModelCall) -> ModelResult:
        ...

    def stream(self, call: ModelCall) -> AsyncIterator[str]:
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def elapsed_ms(start: float) -> int:
    return int(round((time.monotonic() - start) * 1000))


def status_code_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by an SDK or httpx error, if any."""
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(getattr(error, "response", None), "status_code", None)
    return status if isinstance(status, int) else None


def raise_if_fatal(error: BaseException, **context: Any) -> None:
    """Raise for failures that must not become error-shaped responses."""
    if isinstance(error, GatewayError):
        error.context.update({k: v for k, v in context.items() if v is not None})
        raise error

    status = status_code_of(error)
    if status in FATAL_STATUS_CODES:
        raise BackendError(
            f"Provider rejected the request (HTTP {status}): {error}",
            context={**context, "status_code": status},
        ) from error


def parse_tool_arguments(raw: Any) -> dict[str, Any] | str:
    """Decode JSON-object argument strings; keep anything else verbatim."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return raw
        return decoded if isinstance(decoded, dict) else raw
    return str(raw)


def error_response(
    request: GenerateRequest,
    error: BaseException,
    latency_ms: int,
    metadata: dict[str, Any],
) -> GenerateResponse:
    return create_response(
        request_id=request.id,
        output_text="",
        finish_reason=FinishReason.ERROR,
        usage=Usage(),
        latency_ms=latency_ms,
        metadata={
            **metadata,
            "error": str(error) or type(error).__name__,
            "error_type": type(error).__name__,
        },
    )


# ---------------------------------------------------------------------------
# Base Backend
# ---------------------------------------------------------------------------

class BaseBackend(ABC):
    """
    Adapter around a single provider driver.

    Subclasses set `name` and `finish_reasons`, and build their driver in
    __init__. Unmapped finish reasons fall back to `unknown_finish_reason`.
    """

    name: str = "backend"
    finish_reasons: dict[str, FinishReason] = {}
    unknown_finish_reason: FinishReason = FinishReason.STOP
    empty_output_text: str = ""

    def __init__(self, driver: ProviderDriver, default_model: str):
        self._driver = driver
        self.default_model = default_model

    # --- Request projection ---

    def resolve_model(self, request: GenerateRequest) -> str:
        return request.sampling().model or self.default_model

    def build_call(self, request: GenerateRequest, model: str) -> ModelCall:
        return ModelCall(
            model=model,
            messages=build_messages(request),
            sampling=request.sampling(),
            tools=list(request.tools),
        )

    def base_metadata(self, model: str, routed_to: str) -> dict[str, Any]:
        return {"backend": self.name, "model": model, "routed_to": routed_to}

    # --- Generation ---

    async def generate(
        self, request: GenerateRequest, *, routed_to: str = "direct"
    ) -> GenerateResponse:
        model = self.resolve_model(request)
        call = self.build_call(request, model)
        return await self._invoke(
            request, call, self.base_metadata(model, routed_to), self._driver.complete
        )

    async def generate_stream(
        self, request: GenerateRequest, *, routed_to: str = "direct"
    ) -> AsyncIterator[PartialResponse]:
        """Yield the growing text as a PartialResponse whenever a chunk adds any."""
        model = self.resolve_model(request)
        call = self.build_call(request, model)
        async for partial in self._accumulate(
            self._driver.stream(call), self.base_metadata(model, routed_to)
        ):
            yield partial

    async def _invoke(
        self,
        request: GenerateRequest,
        call: ModelCall,
        metadata: dict[str, Any],
        complete: Callable[[ModelCall], Awaitable[ModelResult]],
        *,
        run: Optional[Callable[[Callable[[], Awaitable[ModelResult]]], Awaitable[ModelResult]]] = None,
    ) -> GenerateResponse:
        """
        Call the driver and shape the outcome into a GenerateResponse.

        `run` wraps the call (the multi-provider queue passes its run()).
        Latency covers only the provider call, not time spent inside `run`
        before the call starts.
        """
        started: list[float] = []

        async def timed() -> ModelResult:
            started.append(time.monotonic())
            return await complete(call)

        try:
            result = await (run(timed) if run is not None else timed())
        except Exception as err:
            latency_ms = elapsed_ms(started[0]) if started else 0
            raise_if_fatal(err, backend=self.name, model=metadata.get("model"), request_id=request.id)
            logger.warning(
                "backend_call_failed",
                extra={
                    "backend": self.name,
                    "model": metadata.get("model"),
                    "request_id": request.id,
                    "error": str(err)[:200],
                },
            )
            return error_response(request, err, latency_ms, metadata)

        response = self.build_response(request, result, elapsed_ms(started[0]), metadata)
        logger.info(
            "backend_generate",
            extra={
                "backend": self.name,
                "model": metadata.get("model"),
                "finish_reason": response.finish_reason,
                "tokens": response.usage.total_tokens,
                "latency_ms": response.latency_ms,
            },
        )
        return response

    @staticmethod
    async def _accumulate(
        deltas: AsyncIterator[str], metadata: dict[str, Any]
    ) -> AsyncIterator[PartialResponse]:
        accumulated = ""
        async for delta in deltas:
            if not delta:
                continue
            accumulated += delta
            yield PartialResponse(output_text=accumulated, metadata={**metadata, "streaming": True})

    # --- Response shaping ---

    def map_finish_reason(self, raw: Optional[str], result: ModelResult) -> FinishReason:
        return map_finish_reason(raw, self.finish_reasons, self.unknown_finish_reason)

    def build_response(
        self,
        request: GenerateRequest,
        result: ModelResult,
        latency_ms: int,
        metadata: dict[str, Any],
    ) -> GenerateResponse:
        finish_reason = self.map_finish_reason(result.finish_reason, result)
        text = result.text or ""
        merged = {**metadata, **result.metadata}

        if not text and not result.tool_calls and finish_reason != FinishReason.ERROR:
            logger.warning(
                "backend_empty_completion",
                extra={"backend": self.name, "model": merged.get("model"), "raw": result.finish_reason},
            )
            finish_reason = FinishReason.ERROR
            text = self.empty_output_text
            merged["error"] = "Provider returned no text and no tool calls"

        return create_response(
            request_id=request.id,
            output_text=text,
            finish_reason=finish_reason,
            usage=result.usage,
            latency_ms=latency_ms,
            metadata=merged,
            tool_calls=result.tool_calls or None,
        )
