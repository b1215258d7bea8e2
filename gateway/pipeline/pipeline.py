"""
Pipeline — orchestrates one generation request end to end.

    canonicalize -> cache lookup -> route -> backend -> validate
                 -> post-process -> cache store

Every stage runs through instrument_stage() and, on failure, is re-raised
with its stage name, plugin id, request id and trace id attached via
raise_with_context(). A cancelled ExecutionContext stops the run before
the next stage.

Only successful responses are cached, and only after validation and
post-processing, so a hit is returned as stored. Error-shaped responses
from a backend are returned but never stored. Usage the backend left at zero is
filled with the heuristic tokenizer. The final response carries
cache_status ("hit" | "miss" | "disabled"), response_source ("cache" |
"backend") and, when caching is on, cache_key in its metadata.

Usage:
    from gateway.pipeline import Pipeline

    pipeline = Pipeline(
        backends={"openai": OpenAIBackend(), "local": OllamaBackend()},
        cache=MemoryCache({"max_entries": 1000}),
    )
    response = await pipeline.generate(create_request(prompt="hello", route_hint="local"))
"""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from gateway.cache.base import make_cache_key
from gateway.contracts.models import (
    FinishReason,
    GenerateRequest,
    GenerateResponse,
    PartialResponse,
    Usage,
)
from gateway.contracts.protocols import (
    Backend,
    Cache,
    Canonicalizer,
    EventPublisher,
    Instrumentation,
    PostProcessor,
    Router,
    Validator,
)
from gateway.exceptions import (
    BackendError,
    ConfigurationError,
    raise_with_context,
    with_error_context,
)
from gateway.pipeline import events
from gateway.pipeline.context import ExecutionContext
from gateway.pipeline.instrumentation import NoopInstrumentation, instrument_stage
from gateway.pipeline.stages import DefaultCanonicalizer, HintRouter, PassthroughValidator
from gateway.pipeline.tokenizer import HeuristicTokenizer

logger = logging.getLogger(__name__)

T = TypeVar("T")
CacheStrategy = Callable[[GenerateRequest], Optional[str]]


class Pipeline:
    """Composes stages, a cache and named backends into generate()."""

    def __init__(
        self,
        *,
        backends: dict[str, Backend],
        canonicalizer: Optional[Canonicalizer] = None,
        cache: Optional[Cache] = None,
        router: Optional[Router] = None,
        validator: Optional[Validator] = None,
        post_processors: Optional[list[PostProcessor]] = None,
        instrumentation: Optional[Instrumentation] = None,
        cache_strategy: CacheStrategy = make_cache_key,
        cache_ttl: Optional[float] = None,
        stage_plugins: Optional[dict[str, str]] = None,
        tokenizer: Optional[HeuristicTokenizer] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        if not backends:
            raise ConfigurationError("Pipeline needs at least one backend")

        self.backends = dict(backends)
        self.canonicalizer = canonicalizer or DefaultCanonicalizer()
        self.cache = cache
        self.router = router or HintRouter(self.backends)
        self.validator = validator or PassthroughValidator()
        self.post_processors = list(post_processors or [])
        self.instrumentation = instrumentation or NoopInstrumentation()
        self.cache_strategy = cache_strategy
        self.cache_ttl = cache_ttl
        self.stage_plugins = dict(stage_plugins or {})
        self.tokenizer = tokenizer or HeuristicTokenizer()
        self.publisher = publisher

    # --- Public API ---

    async def generate(
        self, request: GenerateRequest, *, trace_id: Optional[str] = None
    ) -> GenerateResponse:
        ctx = ExecutionContext(request, trace_id=trace_id, publisher=self.publisher)
        return await self.run(ctx)

    async def generate_stream(
        self, request: GenerateRequest, *, trace_id: Optional[str] = None
    ) -> AsyncIterator[PartialResponse]:
        """Canonicalize and route, then stream from the backend. Streams bypass the cache."""
        ctx = ExecutionContext(request, trace_id=trace_id, publisher=self.publisher)
        canonical = await self._canonicalize(ctx)

        backend_id = await self._run_stage("router", ctx, lambda: self.router.route(canonical))
        backend = self._backend(backend_id)
        stream = getattr(backend, "generate_stream", None)
        if stream is None:
            raise BackendError(
                f"Backend '{backend_id}' does not support streaming",
                context={"backend_id": backend_id, "request_id": request.id},
            )
        await ctx.record_event(events.ROUTE_SELECTED, {"backend_id": backend_id})

        async for partial in stream(canonical, routed_to=backend_id):
            yield partial

    async def run(self, ctx: ExecutionContext) -> GenerateResponse:
        canonical = await self._canonicalize(ctx)

        # Cache lookup
        cache_key = self.cache_strategy(canonical) if self.cache is not None else None
        cached: Optional[GenerateResponse] = None

        if cache_key:
            start = time.monotonic()
            cached = await self._run_stage(
                "cache.get", ctx, lambda: self.cache.get(cache_key, request=canonical)
            )
            cache_latency_ms = _elapsed_ms(start)
            if cached is not None:
                cached = cached.model_copy(update={"latency_ms": cache_latency_ms})
                await ctx.record_event(
                    events.CACHE_HIT,
                    {"cache_key": cache_key, "backend": "cache", "latency_ms": cache_latency_ms},
                )
            else:
                await ctx.record_event(
                    events.CACHE_MISS, {"cache_key": cache_key, "latency_ms": cache_latency_ms}
                )

        if cached is not None:
            # Stored entries already went through validation and post-processing
            final = self._ensure_usage(cached, canonical)
            response_source = "cache"
        else:
            final = await self._generate_fresh(ctx, canonical)
            response_source = "backend"

            if cache_key and final.finish_reason != FinishReason.ERROR.value:
                stored = final
                await self._run_stage(
                    "cache.set",
                    ctx,
                    lambda: self.cache.set(cache_key, stored, ttl=self.cache_ttl),
                )
                await ctx.record_event(events.CACHE_STORE, {"cache_key": cache_key})

        if final.request_id != ctx.request.id:
            final = final.model_copy(update={"request_id": ctx.request.id})

        if cached is not None:
            cache_status = "hit"
        elif cache_key:
            cache_status = "miss"
        else:
            cache_status = "disabled"

        extra_meta: dict[str, Any] = {"cache_status": cache_status, "response_source": response_source}
        if cache_key:
            extra_meta["cache_key"] = cache_key
        final = final.with_metadata(**extra_meta)

        ctx.response = final
        logger.info(
            "pipeline_complete",
            extra={
                "request_id": ctx.request.id,
                "backend": final.metadata.get("backend"),
                "cache_status": cache_status,
                "finish_reason": final.finish_reason,
                "latency_ms": final.latency_ms,
            },
        )
        return final

    # --- Stages ---

    async def _generate_fresh(
        self, ctx: ExecutionContext, canonical: GenerateRequest
    ) -> GenerateResponse:
        """Route, call the backend, then validate and post-process the result."""
        backend_id = await self._run_stage("router", ctx, lambda: self.router.route(canonical))
        await ctx.record_event(events.ROUTE_SELECTED, {"backend_id": backend_id})

        response = await self._run_stage(
            "backend", ctx, lambda: self._invoke_backend(ctx, backend_id, canonical)
        )
        response = self._ensure_usage(response, canonical)

        validated = await self._run_stage(
            "validator", ctx, lambda: self.validator.validate(response, request=canonical)
        )
        await ctx.record_event(
            events.VALIDATION_COMPLETE,
            {"source": "backend", "finish_reason": validated.finish_reason},
        )

        final = validated
        for index, processor in enumerate(self.post_processors):
            current = final
            final = await self._run_stage(
                f"post_process[{index}]",
                ctx,
                lambda: processor.process(current, request=canonical),
            )
        return final

    async def _canonicalize(self, ctx: ExecutionContext) -> GenerateRequest:
        canonical = await self._run_stage(
            "canonicalize", ctx, lambda: self.canonicalizer.canonicalize(ctx.request)
        )
        if canonical.id != ctx.request.id:
            canonical = canonical.model_copy(update={"id": ctx.request.id})
        ctx.canonical_request = canonical
        return canonical

    def _backend(self, backend_id: str) -> Backend:
        backend = self.backends.get(backend_id)
        if backend is None:
            raise BackendError(
                f"Backend '{backend_id}' is not registered",
                context={"backend_id": backend_id, "available": sorted(self.backends)},
            )
        return backend

    async def _invoke_backend(
        self, ctx: ExecutionContext, backend_id: str, request: GenerateRequest
    ) -> GenerateResponse:
        backend = self._backend(backend_id)

        start = time.monotonic()
        response = await backend.generate(request, routed_to=backend_id)
        latency_ms = _elapsed_ms(start)

        if response.latency_ms == 0:
            response = response.model_copy(update={"latency_ms": latency_ms})

        await ctx.record_event(
            events.BACKEND_CALLED, {"backend_id": backend_id, "latency_ms": latency_ms}
        )
        return response

    async def _run_stage(
        self,
        stage: str,
        ctx: ExecutionContext,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        ctx.ensure_not_cancelled()
        ctx.mark_stage_start(stage)
        await ctx.record_event(events.STAGE_START, {"stage": stage})

        plugin_id = self.stage_plugins.get(stage)
        stage_context = {"trace_id": ctx.trace_id, "stage": stage, "plugin_id": plugin_id}
        error_context = {
            "stage": stage,
            "plugin_id": plugin_id,
            "request_id": ctx.request.id,
            "trace_id": ctx.trace_id,
        }

        # on_error sees the enriched error, not the raw one
        async def call() -> T:
            return await with_error_context(fn, **error_context)

        try:
            result = await instrument_stage(self.instrumentation, stage, stage_context, call)
            await ctx.record_event(events.STAGE_END, {"stage": stage})
            return result
        except Exception as err:
            error_name = getattr(err, "context", {}).get("original_error", type(err).__name__)
            await ctx.record_event(events.STAGE_ERROR, {"stage": stage, "error": error_name})
            raise_with_context(err, **error_context)
        finally:
            ctx.mark_stage_end(stage)

    def _ensure_usage(self, response: GenerateResponse, request: GenerateRequest) -> GenerateResponse:
        """Estimate zero token counts. Error responses keep their zeroed usage."""
        if response.finish_reason == FinishReason.ERROR.value:
            return response

        usage = response.usage
        prompt_tokens = usage.prompt_tokens or self.tokenizer.count_request_tokens(request)
        completion_tokens = usage.completion_tokens or self.tokenizer.count_response_tokens(response)
        if prompt_tokens == usage.prompt_tokens and completion_tokens == usage.completion_tokens:
            return response

        return response.model_copy(update={
            "usage": Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=max(usage.total_tokens, prompt_tokens + completion_tokens),
                extra=usage.extra,
            ),
        })


def _elapsed_ms(start: float) -> int:
    return int(round((time.monotonic() - start) * 1000))
