from __future__ import annotations
from typing import Optional
import redis.asyncio as redis


# ---- keys
def k_admin(email: str) -> str: return f"admincache:{email.strip().lower()}"


class AdminCache:
    def __init__(self, r: redis.Redis, ttl_seconds: float = 300) -> None:
        self.r = r
        self.ttl = int(ttl_seconds)

    async def get(self, email: str) -> Optional[bool]:
        v = await self.r.get(k_admin(email))
        if v is None:
            return None
        if isinstance(v, bytes):
            v = v.decode()
        return v == "1"

    async def set(self, email: str, is_admin: bool) -> None:
        await self.r.setex(k_admin(email), self.ttl, "1" if is_admin else "0")

    async def invalidate(self, email: str) -> None:
        await self.r.delete(k_admin(email))

    async def clear(self) -> None:
        # only our own keys; the redis db may be shared
        keys = [k async for k in self.r.scan_iter(match="admincache:*")]
        if keys:
            await self.r.delete(*keys)
