"""
Stage contracts a pipeline composes around caches and backends.

Each stage is a structural Protocol: anything with the right async
methods plugs in, no base class required.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable

from gateway.contracts.models import GenerateRequest, GenerateResponse, PartialResponse


@runtime_checkable
class Canonicalizer(Protocol):
    """Idempotent normalization run before cache-key computation."""

    async def canonicalize(self, request: GenerateRequest) -> GenerateRequest:
        ...


@runtime_checkable
class Cache(Protocol):
    """Keyed response storage."""

    async def get(
        self, key: str, *, request: Optional[GenerateRequest] = None
    ) -> Optional[GenerateResponse]:
        ...

    async def set(
        self, key: str, value: GenerateResponse, *, ttl: Optional[float] = None
    ) -> None:
        ...

    async def invalidate(self, key: str) -> None:
        ...


@runtime_checkable
class Router(Protocol):
    """Pure backend selection. Must not call a backend or cache."""

    async def route(self, request: GenerateRequest) -> str:
        ...


@runtime_checkable
class Backend(Protocol):
    """Calls one LLM provider with a routed request."""

    async def generate(
        self, request: GenerateRequest, *, routed_to: str = "direct"
    ) -> GenerateResponse:
        ...


@runtime_checkable
class StreamingBackend(Backend, Protocol):
    """A backend that can also stream partial responses."""

    def generate_stream(
        self, request: GenerateRequest, *, routed_to: str = "direct"
    ) -> AsyncIterator[PartialResponse]:
        ...


@runtime_checkable
class Validator(Protocol):
    """May reject or rewrite a response; records what it did in validator_events."""

    async def validate(
        self, response: GenerateResponse, *, request: GenerateRequest
    ) -> GenerateResponse:
        ...


@runtime_checkable
class PostProcessor(Protocol):
    """Cosmetic or business-rule transforms after validation."""

    async def process(
        self, response: GenerateResponse, *, request: GenerateRequest
    ) -> GenerateResponse:
        ...


@runtime_checkable
class EventPublisher(Protocol):
    """Publishes structured pipeline events."""

    async def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        ...


@runtime_checkable
class Instrumentation(Protocol):
    """Hooks invoked around every pipeline stage."""

    async def on_stage_start(self, stage: str, context: dict[str, Any]) -> None:
        ...

    async def on_stage_end(self, stage: str, context: dict[str, Any]) -> None:
        ...

    async def on_error(
        self, stage: str, error: BaseException, context: dict[str, Any]
    ) -> None:
        ...
