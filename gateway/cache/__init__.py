"""
Cache tier — memory, disk and layered response caches sharing one contract.
"""

from gateway.cache.base import BaseCache, CacheConfig, CacheStats, make_cache_key
from gateway.cache.disk import DiskCache, DiskCacheConfig, create_disk_cache
from gateway.cache.layered import LayeredCache, LayeredCacheConfig, create_layered_cache
from gateway.cache.memory import MemoryCache, MemoryCacheConfig, create_memory_cache

__all__ = [
    "BaseCache",
    "CacheConfig",
    "CacheStats",
    "DiskCache",
    "DiskCacheConfig",
    "LayeredCache",
    "LayeredCacheConfig",
    "MemoryCache",
    "MemoryCacheConfig",
    "create_disk_cache",
    "create_layered_cache",
    "create_memory_cache",
    "make_cache_key",
]
