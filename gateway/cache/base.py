"""
Cache Base — shared stats, expiry and copy semantics for all cache tiers.

Every tier (memory, disk, layered) exposes the same async contract:
get / set / invalidate, plus get_stats() / reset_stats(). Stored
responses are always deep copies so callers cannot mutate cached state
through an alias.

Expiry timestamps are absolute epoch seconds from the tier's clock.
The clock is injectable so tests can simulate the passage of time.

Cache keys are opaque strings. make_cache_key() builds the default key
from the request fields that change the generated output.
"""

from __future__ import annotations

import hashlib
import json
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from gateway.contracts.models import GenerateRequest, GenerateResponse
from gateway.exceptions import ConfigurationError

ConfigT = TypeVar("ConfigT", bound="CacheConfig")


# ---------------------------------------------------------------------------
# Config & Stats
# ---------------------------------------------------------------------------

class CacheConfig(BaseModel):
    """Options shared by every tier."""

    model_config = ConfigDict(extra="forbid")

    default_ttl: Optional[float] = Field(None, gt=0, description="Seconds; None = no expiry")
    enable_stats: bool = True


def parse_config(model: type[ConfigT], config: Any) -> ConfigT:
    """Coerce None / dict / model instance into `model`, raising ConfigurationError."""
    if isinstance(config, model):
        return config
    try:
        if isinstance(config, BaseModel):
            return model(**config.model_dump(exclude_unset=True))
        return model(**(config or {}))
    except PydanticValidationError as err:
        raise ConfigurationError(
            f"Invalid {model.__name__}: {err}",
            context={"config": model.__name__},
        ) from err


@dataclass
class CacheStats:
    """Per-instance traffic counters. hit_rate is derived in get_stats()."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    evictions: int = 0
    hit_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Key Generation
# ---------------------------------------------------------------------------

def make_cache_key(request: GenerateRequest) -> str:
    """
    Deterministic cache key for a request.

    An explicit request.cache_key always wins. Otherwise a SHA-256 over
    everything that influences the output: prompt, system prompt,
    history, parameters and tools.
    """
    if request.cache_key:
        return request.cache_key

    raw = json.dumps(
        {
            "prompt": request.prompt,
            "system": request.system_prompt,
            "history": request.history,
            "parameters": request.parameters,
            "tools": request.tools,
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(raw.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Base Cache
# ---------------------------------------------------------------------------

class BaseCache(ABC):
    """
    Abstract cache tier. Subclasses implement get/set/invalidate and
    report traffic through _mark_hit/_mark_miss/_mark_eviction.
    """

    config_model: type[CacheConfig] = CacheConfig

    def __init__(
        self,
        config: Any = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.config = parse_config(self.config_model, config)
        self._clock = clock
        self.stats = CacheStats()

    @abstractmethod
    async def get(
        self, key: str, *, request: Optional[GenerateRequest] = None
    ) -> Optional[GenerateResponse]:
        ...

    @abstractmethod
    async def set(
        self, key: str, value: GenerateResponse, *, ttl: Optional[float] = None
    ) -> None:
        ...

    @abstractmethod
    async def invalidate(self, key: str) -> None:
        ...

    # --- Stats ---

    def get_stats(self) -> CacheStats:
        """Snapshot of the counters with hit_rate = hits / (hits + misses)."""
        total = self.stats.hits + self.stats.misses
        hit_rate = self.stats.hits / total if total > 0 else 0.0
        return CacheStats(
            hits=self.stats.hits,
            misses=self.stats.misses,
            size=self.stats.size,
            evictions=self.stats.evictions,
            hit_rate=round(hit_rate, 4),
        )

    def reset_stats(self) -> None:
        """Reset all counters without touching stored entries."""
        self.stats = CacheStats(size=self.stats.size)

    def _mark_hit(self) -> None:
        if self.config.enable_stats:
            self.stats.hits += 1

    def _mark_miss(self) -> None:
        if self.config.enable_stats:
            self.stats.misses += 1

    def _mark_eviction(self) -> None:
        if self.config.enable_stats:
            self.stats.evictions += 1

    # --- Helpers ---

    def _now(self) -> float:
        return self._clock()

    def _compute_expiry(self, ttl: Optional[float] = None) -> Optional[float]:
        """Absolute expiry for a new entry, or None when it never expires."""
        ttl_seconds = ttl if ttl is not None else self.config.default_ttl
        if not ttl_seconds:
            return None
        return self._now() + ttl_seconds

    @staticmethod
    def _clone(response: GenerateResponse) -> GenerateResponse:
        return response.model_copy(deep=True)
