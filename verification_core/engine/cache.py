# -*- coding: utf-8 -*-
"""Coarse TTL cache with tag invalidation for listing results."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional

__all__ = ["TaggedTTLCache"]


@dataclass
class _CacheEntry:
    value: Any
    created: float
    tags: FrozenSet[str] = field(default_factory=frozenset)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class TaggedTTLCache:
    def __init__(self, ttl: float, capacity: int = 256) -> None:
        self.ttl = max(0.0, ttl)
        self.capacity = max(1, capacity)
        self._store: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._locks: Dict[str, _KeyLock] = {}
        # bumped by every invalidation; loads that straddle a bump are not stored
        self._generation = 0

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def __len__(self) -> int:
        return len(self._store)

    def _evict(self) -> None:
        while len(self._store) > self.capacity:
            self._store.popitem(last=False)

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if (time.monotonic() - entry.created) > self.ttl:
            self._store.pop(key, None)
            return None
        self._store.move_to_end(key, last=True)
        return entry.value

    def put(self, key: str, value: Any, tags: Iterable[str] = ()) -> None:
        if not self.enabled:
            return
        self._store[key] = _CacheEntry(value=value, created=time.monotonic(), tags=frozenset(tags))
        self._store.move_to_end(key, last=True)
        self._evict()

    def invalidate_tag(self, tag: str) -> int:
        self._generation += 1
        stale = [k for k, e in self._store.items() if tag in e.tags]
        for k in stale:
            self._store.pop(k, None)
        return len(stale)

    def clear(self) -> None:
        self._generation += 1
        self._store.clear()

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        tags: Iterable[str] = (),
    ) -> Any:
        """Return the cached value or run `loader` once per key, even under concurrent callers.

        A value whose load overlapped an invalidation is returned to its caller
        but not cached. Per-key locks live only while someone holds or awaits them.
        """
        if not self.enabled:
            return await loader()
        hit = self.get(key)
        if hit is not None:
            return hit

        slot = self._locks.get(key)
        if slot is None:
            slot = self._locks[key] = _KeyLock()
        slot.users += 1
        try:
            async with slot.lock:
                hit = self.get(key)
                if hit is not None:
                    return hit
                generation = self._generation
                value = await loader()
                if generation == self._generation:
                    self.put(key, value, tags)
                return value
        finally:
            slot.users -= 1
            if slot.users == 0 and self._locks.get(key) is slot:
                del self._locks[key]
