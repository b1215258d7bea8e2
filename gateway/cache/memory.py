"""
Memory Cache — in-process LRU cache with per-entry TTL.

Entries live in an OrderedDict kept in access order: the most recently
read or written key sits at the end, the least recently used at the
front. Capacity (max_entries) is enforced by evicting from the front.

Expiry is independent of LRU order. With eager_expiry on (the default),
every get/set first sweeps all expired entries; otherwise an expired
entry is only dropped when it is read.

Usage:
    from gateway.cache.memory import MemoryCache

    cache = MemoryCache({"max_entries": 500, "default_ttl": 300})
    await cache.set(key, response)
    hit = await cache.get(key)
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import Field

from gateway.cache.base import BaseCache, CacheConfig
from gateway.contracts.models import GenerateRequest, GenerateResponse

logger = logging.getLogger(__name__)


class MemoryCacheConfig(CacheConfig):
    max_entries: Optional[int] = Field(None, gt=0, description="None = unbounded")
    eager_expiry: bool = True


@dataclass
class CacheEntry:
    """A cached response with expiry and recency metadata."""

    response: GenerateResponse
    expires_at: Optional[float]
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at < now


class MemoryCache(BaseCache):
    """LRU + TTL cache held in process memory."""

    config_model = MemoryCacheConfig
    config: MemoryCacheConfig

    def __init__(self, config: Any = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    @property
    def size(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # --- Core Operations ---

    async def get(
        self, key: str, *, request: Optional[GenerateRequest] = None
    ) -> Optional[GenerateResponse]:
        if self.config.eager_expiry:
            self._evict_expired()

        entry = self._entries.get(key)
        if entry is None:
            self._mark_miss()
            return None

        now = self._now()
        if entry.is_expired(now):
            del self._entries[key]
            self.stats.size = len(self._entries)
            self._mark_miss()
            return None

        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._mark_hit()
        self.stats.size = len(self._entries)

        logger.debug("cache_hit", extra={"tier": "memory", "key": key[:16]})
        return self._clone(entry.response)

    async def set(
        self, key: str, value: GenerateResponse, *, ttl: Optional[float] = None
    ) -> None:
        entry = CacheEntry(
            response=self._clone(value),
            expires_at=self._compute_expiry(ttl),
            last_accessed=self._now(),
        )

        # Re-inserting moves the key to the MRU end
        self._entries.pop(key, None)
        self._entries[key] = entry

        if self.config.eager_expiry:
            self._evict_expired()

        self._enforce_capacity()
        self.stats.size = len(self._entries)

    async def invalidate(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self.stats.size = len(self._entries)

    async def clear(self) -> None:
        self._entries.clear()
        self.stats.size = 0

    # --- Eviction ---

    def _enforce_capacity(self) -> None:
        limit = self.config.max_entries
        if not limit:
            return
        while len(self._entries) > limit:
            evicted_key, _ = self._entries.popitem(last=False)
            self._mark_eviction()
            logger.debug("cache_eviction", extra={"tier": "memory", "key": evicted_key[:16]})

    def _evict_expired(self) -> int:
        now = self._now()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
            self._mark_eviction()
        if expired:
            self.stats.size = len(self._entries)
        return len(expired)

    # --- Inspection ---

    def list_entries(self) -> list[dict[str, Any]]:
        """Metadata for every entry, LRU first (for debugging)."""
        now = self._now()
        return [
            {
                "key": key[:16] + "...",
                "backend": entry.response.metadata.get("backend", ""),
                "model": entry.response.metadata.get("model", ""),
                "expires_in": (
                    round(entry.expires_at - now, 1) if entry.expires_at is not None else None
                ),
                "is_expired": entry.is_expired(now),
            }
            for key, entry in self._entries.items()
        ]


async def create_memory_cache(config: Any = None, **kwargs: Any) -> MemoryCache:
    return MemoryCache(config, **kwargs)
