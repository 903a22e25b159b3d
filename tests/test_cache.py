import pytest

from duxxan.services.cache import DisabledCache, MemoryCache, build_cache


async def test_memory_cache_roundtrip_and_prefix_invalidation():
    cache = MemoryCache(ttl_seconds=60)
    await cache.set("raffles:all:50:0", [{"id": 1}])
    await cache.set("raffles:active:50:0", [])
    await cache.set("donations:all", [{"id": 2}])

    assert await cache.get("raffles:all:50:0") == [{"id": 1}]

    await cache.invalidate_prefix("raffles:")

    assert await cache.get("raffles:all:50:0") is None
    assert await cache.get("raffles:active:50:0") is None
    assert await cache.get("donations:all") == [{"id": 2}]


async def test_memory_cache_entries_expire():
    cache = MemoryCache(ttl_seconds=0)
    await cache.set("k", "v")

    assert await cache.get("k") is None


async def test_build_cache():
    assert isinstance(build_cache("memory"), MemoryCache)
    disabled = build_cache("disabled")
    assert isinstance(disabled, DisabledCache)
    await disabled.set("k", "v")
    assert await disabled.get("k") is None

    with pytest.raises(ValueError):
        build_cache("redis")
