"""
Provider registry and outbound request queue for the multi-provider adapter.

ProviderRegistry maps a provider name to a factory that builds its driver
from a config dict. Drivers are built lazily on first use and reused, so
a registry only needs credentials for the providers it actually calls.
Each MultiProviderBackend owns its own registry; nothing is global.

RequestQueue serializes calls through one asyncio.Lock (FIFO) and holds
each call back until rate_limit_ms has passed since the previous dispatch.
A call that raises still releases the queue.

Usage:
    registry = ProviderRegistry(default_provider_factories(), {"openai": {"api_key": "..."}})
    provider, model, driver = registry.resolve("openai:gpt-4o-mini")
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from gateway.backends.anthropic import AnthropicDriver
from gateway.backends.base import ProviderDriver
from gateway.backends.clients import AnthropicMessagesClient, OllamaClient, OpenAIChatClient
from gateway.backends.config import (
    AnthropicBackendConfig,
    GoogleBackendConfig,
    OllamaBackendConfig,
    OpenAIBackendConfig,
    load_backend_config,
)
from gateway.backends.ollama import OllamaDriver
from gateway.backends.openai import OpenAIDriver
from gateway.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProviderFactory = Callable[[dict[str, Any]], ProviderDriver]


# ---------------------------------------------------------------------------
# Built-in provider factories
# ---------------------------------------------------------------------------

def openai_factory(config: dict[str, Any]) -> ProviderDriver:
    cfg = load_backend_config(OpenAIBackendConfig, config)
    return OpenAIDriver(OpenAIChatClient.from_config(cfg))


def anthropic_factory(config: dict[str, Any]) -> ProviderDriver:
    cfg = load_backend_config(AnthropicBackendConfig, config)
    return AnthropicDriver(AnthropicMessagesClient.from_config(cfg), max_tokens=cfg.max_tokens)


def google_factory(config: dict[str, Any]) -> ProviderDriver:
    cfg = load_backend_config(GoogleBackendConfig, config)
    return OpenAIDriver(OpenAIChatClient.from_config(cfg, provider="google"))


def ollama_factory(config: dict[str, Any]) -> ProviderDriver:
    cfg = load_backend_config(OllamaBackendConfig, config)
    return OllamaDriver(OllamaClient.from_config(cfg), keep_alive=cfg.keep_alive)


def default_provider_factories() -> dict[str, ProviderFactory]:
    return {
        "openai": openai_factory,
        "anthropic": anthropic_factory,
        "google": google_factory,
        "ollama": ollama_factory,
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ProviderRegistry:
    """Lazily built provider drivers keyed by provider name."""

    def __init__(
        self,
        factories: dict[str, ProviderFactory],
        configs: Optional[dict[str, dict[str, Any]]] = None,
        separator: str = ":",
    ):
        if not separator:
            raise ConfigurationError("Provider separator cannot be empty")
        self._factories = dict(factories)
        self._configs = dict(configs or {})
        self._drivers: dict[str, ProviderDriver] = {}
        self.separator = separator

    @property
    def providers(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, provider: str) -> bool:
        return provider in self._factories

    def split(self, model_id: str) -> tuple[str, str]:
        """"anthropic:claude-3-haiku" -> ("anthropic", "claude-3-haiku")."""
        provider, sep, model = model_id.partition(self.separator)
        if not sep or not provider or not model:
            raise ConfigurationError(
                f"Model id '{model_id}' is not of the form provider{self.separator}model",
                context={"model": model_id},
            )
        return provider, model

    def get(self, provider: str) -> ProviderDriver:
        if provider not in self._factories:
            raise ConfigurationError(
                f"Unknown provider '{provider}'. Available: {', '.join(self.providers)}",
                context={"provider": provider},
            )
        if provider not in self._drivers:
            self._drivers[provider] = self._factories[provider](self._configs.get(provider, {}))
            logger.debug("provider_driver_created", extra={"provider": provider})
        return self._drivers[provider]

    def resolve(self, model_id: str) -> tuple[str, str, ProviderDriver]:
        provider, model = self.split(model_id)
        return provider, model, self.get(provider)


# ---------------------------------------------------------------------------
# Request Queue
# ---------------------------------------------------------------------------

class RequestQueue:
    """
    FIFO dispatch with a minimum gap between consecutive calls.

    run(fn) holds the queue for the whole call. wait_turn() only claims a
    dispatch slot; streaming uses it so a long stream does not block others.
    """

    def __init__(
        self,
        rate_limit_ms: int = 0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.rate_limit_ms = rate_limit_ms
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    async def _pace(self) -> None:
        if self._last_request is not None and self.rate_limit_ms > 0:
            elapsed_ms = (self._clock() - self._last_request) * 1000
            if elapsed_ms < self.rate_limit_ms:
                await self._sleep((self.rate_limit_ms - elapsed_ms) / 1000)
        self._last_request = self._clock()

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            await self._pace()
            return await fn()

    async def wait_turn(self) -> None:
        async with self._lock:
            await self._pace()
