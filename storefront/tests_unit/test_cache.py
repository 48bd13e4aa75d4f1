"""
Tests for the reference data cache (services.cache) against an in-process fake Redis.
"""
import fnmatch
from decimal import Decimal

import pytest

from storefront.app.services.cache import CacheService


class FakeRedis:
    """Just the redis.asyncio calls CacheService makes."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)

    async def keys(self, pattern):
        return [k for k in self.data if fnmatch.fnmatch(k, pattern)]

    async def ping(self):
        return True


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def cache(redis):
    return CacheService(redis, shipping_ttl=120, category_ttl=60)


# --- get / set ---


@pytest.mark.asyncio
async def test_miss_returns_none(cache):
    assert await cache.get("shipping:methods:store:1") is None


@pytest.mark.asyncio
async def test_decimals_stored_as_strings(cache, redis):
    await cache.set("catalog:x", {"price": Decimal("9.95")})
    assert redis.data["catalog:x"] == '{"price": "9.95"}'
    assert await cache.get("catalog:x") == {"price": "9.95"}


# --- shipping methods ---


@pytest.mark.asyncio
async def test_shipping_methods_use_configured_ttl(cache, redis):
    await cache.set_shipping_methods(3, [{"id": 1, "name": "Ground"}])
    assert redis.ttls["shipping:methods:store:3"] == 120
    assert await cache.get_shipping_methods(3) == [{"id": 1, "name": "Ground"}]


@pytest.mark.asyncio
async def test_invalidate_shipping_methods_clears_every_store(cache, redis):
    await cache.set_shipping_methods(1, [])
    await cache.set_shipping_methods(2, [{"id": 5}])
    await cache.set_category_tree(False, [{"id": 1}])

    await cache.invalidate_shipping_methods()

    assert await cache.get_shipping_methods(2) is None
    assert await cache.get_category_tree(False) == [{"id": 1}]


# --- category tree ---


@pytest.mark.asyncio
async def test_category_tree_variants_are_separate(cache, redis):
    await cache.set_category_tree(True, [{"id": 1}, {"id": 2}])
    await cache.set_category_tree(False, [{"id": 1}])

    assert redis.ttls["catalog:categories:tree:all"] == 60
    assert await cache.get_category_tree(True) == [{"id": 1}, {"id": 2}]
    assert await cache.get_category_tree(False) == [{"id": 1}]

    await cache.invalidate_category_tree()
    assert redis.data == {}


@pytest.mark.asyncio
async def test_ping(cache):
    assert await cache.ping() is True


@pytest.mark.asyncio
async def test_zero_ttl_keeps_entries_until_invalidated(redis):
    cache = CacheService(redis, shipping_ttl=0, category_ttl=0)
    assert cache.shipping_ttl == 0
    assert cache.category_ttl == 0

    await cache.set_shipping_methods(1, [{"id": 1}])
    assert redis.ttls["shipping:methods:store:1"] is None
    assert await cache.get_shipping_methods(1) == [{"id": 1}]
