# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio
import time

import pytest

from verification_core.engine.cache import TaggedTTLCache


def test_put_get_and_tag_invalidation():
    cache = TaggedTTLCache(ttl=60)
    cache.put("a", 1, tags=("verifications",))
    cache.put("b", 2, tags=("verifications",))
    cache.put("c", 3, tags=("other",))

    assert cache.get("a") == 1
    assert cache.invalidate_tag("verifications") == 2
    assert cache.get("a") is None
    assert cache.get("c") == 3
    assert len(cache) == 1


def test_expired_entries_are_dropped():
    cache = TaggedTTLCache(ttl=0.01)
    cache.put("a", 1)
    time.sleep(0.03)
    assert cache.get("a") is None
    assert len(cache) == 0


def test_capacity_evicts_least_recently_used():
    cache = TaggedTTLCache(ttl=60, capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.put("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_zero_ttl_disables_cache():
    cache = TaggedTTLCache(ttl=0)
    assert not cache.enabled
    cache.put("a", 1)
    assert cache.get("a") is None


@pytest.mark.anyio
async def test_get_or_load_single_flight():
    cache = TaggedTTLCache(ttl=60)
    calls = 0

    async def loader():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return "page"

    results = await asyncio.gather(*(cache.get_or_load("k", loader) for _ in range(5)))
    assert results == ["page"] * 5
    assert calls == 1


@pytest.mark.anyio
async def test_get_or_load_does_not_cache_failures():
    cache = TaggedTTLCache(ttl=60)

    async def failing():
        raise RuntimeError("rpc down")

    async def ok():
        return 7

    with pytest.raises(RuntimeError):
        await cache.get_or_load("k", failing)
    assert await cache.get_or_load("k", ok) == 7


@pytest.mark.anyio
async def test_invalidation_during_load_is_not_lost():
    cache = TaggedTTLCache(ttl=60)
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_loader():
        started.set()
        await release.wait()
        return "stale"

    task = asyncio.create_task(cache.get_or_load("k", slow_loader, tags=("verifications",)))
    await started.wait()
    cache.invalidate_tag("verifications")
    release.set()

    assert await task == "stale"
    assert cache.get("k") is None

    async def fresh_loader():
        return "fresh"

    assert await cache.get_or_load("k", fresh_loader, tags=("verifications",)) == "fresh"
    assert cache.get("k") == "fresh"


@pytest.mark.anyio
async def test_clear_during_load_is_not_lost():
    cache = TaggedTTLCache(ttl=60)
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_loader():
        started.set()
        await release.wait()
        return "stale"

    task = asyncio.create_task(cache.get_or_load("k", slow_loader))
    await started.wait()
    cache.clear()
    release.set()
    await task
    assert cache.get("k") is None


@pytest.mark.anyio
async def test_key_locks_do_not_outlive_loads():
    cache = TaggedTTLCache(ttl=60, capacity=8)

    async def loader():
        return "page"

    for i in range(1000):
        await cache.get_or_load(f"verified-accounts:{i * 10}:10", loader)
    assert len(cache) == 8
    assert len(cache._locks) == 0


@pytest.mark.anyio
async def test_key_lock_released_after_concurrent_failures():
    cache = TaggedTTLCache(ttl=60)

    async def failing():
        await asyncio.sleep(0.01)
        raise RuntimeError("rpc down")

    results = await asyncio.gather(*(cache.get_or_load("k", failing) for _ in range(3)), return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)
    assert cache._locks == {}
