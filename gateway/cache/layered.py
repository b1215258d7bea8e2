"""
Layered Cache — a fast volatile tier in front of a durable one.

Reads check memory first and only touch disk on a memory miss. A disk
hit is copied into memory (promote_on_hit) before it is returned, so
the next read for that key stays in memory. The promoted copy expires
with the disk entry; a disk entry with no expiry takes the memory tier's
default TTL. Writes and invalidations fan out to both tiers concurrently
and wait for both.

Both tiers are pluggable: anything satisfying the Cache protocol works.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from gateway.cache.base import BaseCache, CacheConfig, CacheStats, parse_config
from gateway.cache.disk import DiskCache, DiskCacheConfig
from gateway.cache.memory import MemoryCache, MemoryCacheConfig
from gateway.contracts.models import GenerateRequest, GenerateResponse
from gateway.contracts.protocols import Cache

logger = logging.getLogger(__name__)


class LayeredCacheConfig(CacheConfig):
    promote_on_hit: bool = True


class LayeredCache(BaseCache):
    """Memory tier over disk tier with promote-on-hit."""

    config_model = LayeredCacheConfig
    config: LayeredCacheConfig

    def __init__(self, memory: Cache, disk: Cache, config: Any = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.memory = memory
        self.disk = disk

    async def get(
        self, key: str, *, request: Optional[GenerateRequest] = None
    ) -> Optional[GenerateResponse]:
        found = await self.memory.get(key, request=request)
        if found is not None:
            self._mark_hit()
            return self._clone(found)

        found = await self.disk.get(key, request=request)
        if found is None:
            self._mark_miss()
            return None

        if self.config.promote_on_hit:
            await self._promote(key, found)

        self._mark_hit()
        return self._clone(found)

    async def _promote(self, key: str, found: GenerateResponse) -> None:
        """Copy a disk hit into memory without outliving the disk entry."""
        ttl: Optional[float] = None
        remaining_ttl = getattr(self.disk, "remaining_ttl", None)
        if callable(remaining_ttl):
            ttl = remaining_ttl(key)
            if ttl is not None and ttl <= 0:
                return

        await self.memory.set(key, found, ttl=ttl)
        logger.debug("cache_promoted", extra={"key": key[:16], "ttl": ttl})

    async def set(
        self, key: str, value: GenerateResponse, *, ttl: Optional[float] = None
    ) -> None:
        await asyncio.gather(
            self.memory.set(key, value, ttl=ttl),
            self.disk.set(key, value, ttl=ttl),
        )

    async def invalidate(self, key: str) -> None:
        await asyncio.gather(self.memory.invalidate(key), self.disk.invalidate(key))

    async def clear(self) -> None:
        clears = [
            tier.clear()
            for tier in (self.memory, self.disk)
            if callable(getattr(tier, "clear", None))
        ]
        await asyncio.gather(*clears)

    def get_stats(self) -> CacheStats:
        stats = super().get_stats()
        disk_stats = getattr(self.disk, "stats", None)
        if disk_stats is not None:
            stats.size = disk_stats.size
        return stats

    def close(self) -> None:
        close = getattr(self.disk, "close", None)
        if callable(close):
            close()


async def create_layered_cache(
    memory: Optional[dict[str, Any]] = None,
    disk: Optional[dict[str, Any]] = None,
    promote_on_hit: bool = True,
    **kwargs: Any,
) -> LayeredCache:
    """Build a LayeredCache with a MemoryCache over a DiskCache."""
    return LayeredCache(
        MemoryCache(parse_config(MemoryCacheConfig, memory), **kwargs),
        DiskCache(parse_config(DiskCacheConfig, disk), **kwargs),
        {"promote_on_hit": promote_on_hit},
        **kwargs,
    )
