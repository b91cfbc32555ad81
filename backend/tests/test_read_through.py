import asyncio

from chatcore.cache.read_through import ReadThroughCache, best_effort
from chatcore.errors import CacheUnavailableError


async def failing():
    raise CacheUnavailableError("down")


async def test_hit_skips_the_store():
    loads = []

    async def load():
        loads.append(1)
        return ["store"]

    async def lookup():
        return ["cached"]

    value, from_cache = await ReadThroughCache(0.5).read("recent", lookup=lookup, load=load)

    assert (value, from_cache) == (["cached"], True)
    assert loads == []


async def test_miss_loads_and_populates_with_prepared_token():
    populated = []

    async def lookup():
        return []

    async def prepare():
        return "v1"

    async def load():
        return ["store"]

    async def populate(value, token):
        populated.append((value, token))

    value, from_cache = await ReadThroughCache(0.5).read(
        "recent", lookup=lookup, load=load, populate=populate, prepare=prepare
    )

    assert (value, from_cache) == (["store"], False)
    assert populated == [(["store"], "v1")]


async def test_cache_failure_falls_back_to_store():
    async def load():
        return {"c1": 2}

    value, from_cache = await ReadThroughCache(0.5).read("unread", lookup=failing, load=load)

    assert (value, from_cache) == ({"c1": 2}, False)


async def test_slow_cache_times_out():
    async def slow():
        await asyncio.sleep(5)
        return ["cached"]

    async def load():
        return ["store"]

    value, from_cache = await ReadThroughCache(0.01).read("recent", lookup=slow, load=load)

    assert (value, from_cache) == (["store"], False)


async def test_failed_prepare_skips_populate():
    populated = []

    async def lookup():
        return None

    async def load():
        return {}

    async def populate(value, token):
        populated.append(value)

    await ReadThroughCache(0.5).read(
        "unread", lookup=lookup, load=load, populate=populate, prepare=failing, is_hit=lambda v: v is not None
    )

    assert populated == []


async def test_custom_hit_predicate_accepts_empty_values():
    async def lookup():
        return {}

    async def load():
        raise AssertionError("store should not be queried")

    value, from_cache = await ReadThroughCache(0.5).read(
        "unread", lookup=lookup, load=load, is_hit=lambda v: v is not None
    )

    assert (value, from_cache) == ({}, True)


async def test_best_effort_swallows_cache_errors():
    assert await best_effort("write", failing()) is None


async def test_best_effort_returns_the_result():
    async def ok():
        return 3

    assert await best_effort("write", ok()) == 3
