import asyncio

import pytest

from infrastructure.cache import InMemoryTTLCache, association_cache_key


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.anyio
async def test_entry_expires_after_ttl():
    clock = _Clock()
    cache = InMemoryTTLCache(ttl_seconds=5.0, clock=clock)
    await cache.set("k", "value")

    clock.now = 1004.999
    assert await cache.get("k") == "value"

    clock.now = 1005.001
    assert await cache.get("k") is None


@pytest.mark.anyio
async def test_expired_entry_is_evicted_after_the_read():
    clock = _Clock()
    cache = InMemoryTTLCache(ttl_seconds=1.0, clock=clock)
    await cache.set("k", "value")
    clock.now += 2

    assert await cache.get("k") is None
    assert "k" in cache

    await asyncio.sleep(0)
    assert "k" not in cache


@pytest.mark.anyio
async def test_refreshed_entry_survives_scheduled_eviction():
    clock = _Clock()
    cache = InMemoryTTLCache(ttl_seconds=1.0, clock=clock)
    await cache.set("k", "old")
    clock.now += 2

    assert await cache.get("k") is None
    await cache.set("k", "new")
    await asyncio.sleep(0)

    assert await cache.get("k") == "new"


@pytest.mark.anyio
async def test_size_ceiling_evicts_oldest_entry():
    clock = _Clock()
    cache = InMemoryTTLCache(ttl_seconds=300.0, max_entries=3, clock=clock)
    for index, key in enumerate(["b", "a", "c"]):
        clock.now = 1000.0 + index
        await cache.set(key, index)

    clock.now = 1010.0
    await cache.set("d", 3)

    assert len(cache) == 3
    assert "b" not in cache
    assert {key for key in ("a", "c", "d") if key in cache} == {"a", "c", "d"}

    for index in range(10):
        clock.now += 1
        await cache.set(f"extra-{index}", index)
        assert len(cache) <= 3


@pytest.mark.anyio
async def test_overwriting_a_key_does_not_evict():
    cache = InMemoryTTLCache(max_entries=2, clock=_Clock())
    await cache.set("a", 1)
    await cache.set("b", 2)
    await cache.set("a", 3)

    assert len(cache) == 2
    assert await cache.get("a") == 3
    assert await cache.get("b") == 2


@pytest.mark.anyio
async def test_clear_one_or_all():
    cache = InMemoryTTLCache(clock=_Clock())
    await cache.set("a", 1)
    await cache.set("b", 2)

    await cache.clear("a")
    assert await cache.get("a") is None
    assert await cache.get("b") == 2

    await cache.clear()
    assert len(cache) == 0


def test_cache_key_format():
    assert association_cache_key("T1", "company", "C1") == "T1:company:C1"
    assert association_cache_key("T1", "company", "C1", "deal::") == "T1:company:C1:deal::"
