from __future__ import annotations
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple


class AdminCache:
    """In-process email -> is_admin cache with TTL and LRU eviction.

    Entries expire on read; once `max_entries` is reached the least
    recently used entry is dropped. One instance per process, handed to
    request handlers through a dependency so tests can swap or clear it.
    """

    def __init__(self, ttl_seconds: float = 300, max_entries: int = 1024,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._items: "OrderedDict[str, Tuple[bool, float]]" = OrderedDict()

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()

    async def get(self, email: str) -> Optional[bool]:
        key = self._key(email)
        hit = self._items.get(key)
        if hit is None:
            return None
        value, expires_at = hit
        if self._clock() >= expires_at:
            del self._items[key]
            return None
        self._items.move_to_end(key)
        return value

    async def set(self, email: str, is_admin: bool) -> None:
        key = self._key(email)
        self._items[key] = (bool(is_admin), self._clock() + self.ttl)
        self._items.move_to_end(key)
        while len(self._items) > self.max_entries:
            self._items.popitem(last=False)

    async def invalidate(self, email: str) -> None:
        self._items.pop(self._key(email), None)

    async def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
