from typing import Optional
import redis.asyncio as redis

from ...config import ADMIN_CACHE_BACKEND
from ._memory import AdminCache as MemoryAdminCache
from ._redis import AdminCache as RedisAdminCache

BACKENDS = ("memory", "redis")


# Factory keeps server.py simple and constructor-agnostic:
def new_cache(backend: str = ADMIN_CACHE_BACKEND, *,
              r: Optional[redis.Redis] = None,
              ttl_seconds: float = 300,
              max_entries: int = 1024):
    if backend not in BACKENDS:
        raise ValueError(f"unknown admin cache backend {backend!r}")
    if backend == "redis":
        if r is None:
            raise RuntimeError("AdminCache(redis) requires r=redis.Redis")
        return RedisAdminCache(r=r, ttl_seconds=ttl_seconds)
    return MemoryAdminCache(ttl_seconds=ttl_seconds, max_entries=max_entries)


__all__ = ["MemoryAdminCache", "RedisAdminCache", "new_cache", "BACKENDS"]
