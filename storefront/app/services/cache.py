"""
Redis cache for reference data that changes rarely: shipping methods per store
and the category tree. Values are JSON; Decimals go in as strings.
"""
import json
from typing import Any, List, Optional

from redis.asyncio import Redis

from storefront.app.core.metrics import cache_lookups_total
from storefront.app.core.settings import get_settings

DEFAULT_TTL = 300

KEY_SHIPPING_METHODS = "shipping:methods:store:{store_id}"
KEY_CATEGORY_TREE = "catalog:categories:tree:{variant}"


def _tree_variant(include_hidden: bool) -> str:
    return "all" if include_hidden else "published"


class CacheService:
    """Thin JSON layer over one shared Redis connection."""

    _redis: Optional[Redis] = None

    @classmethod
    async def get_redis(cls) -> Redis:
        if cls._redis is None:
            settings = get_settings()
            cls._redis = Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                decode_responses=True,
            )
        return cls._redis

    @classmethod
    async def close(cls):
        if cls._redis:
            await cls._redis.aclose()
            cls._redis = None

    def __init__(self, redis: Redis, shipping_ttl: Optional[int] = None, category_ttl: Optional[int] = None):
        self.redis = redis
        if shipping_ttl is None or category_ttl is None:
            settings = get_settings()
            if shipping_ttl is None:
                shipping_ttl = settings.CACHE_TTL_SHIPPING_METHODS
            if category_ttl is None:
                category_ttl = settings.CACHE_TTL_CATEGORY_TREE
        self.shipping_ttl = shipping_ttl
        self.category_ttl = category_ttl

    async def get(self, key: str) -> Optional[Any]:
        """Cached value for key, None on a miss."""
        data = await self.redis.get(key)
        key_space = key.split(":", 1)[0]
        if data:
            cache_lookups_total.labels(key_space=key_space, result="hit").inc()
            return json.loads(data)
        cache_lookups_total.labels(key_space=key_space, result="miss").inc()
        return None

    async def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL):
        """A ttl of 0 keeps the value until it is invalidated."""
        await self.redis.set(key, json.dumps(value, ensure_ascii=False, default=str), ex=ttl or None)

    async def delete(self, key: str):
        await self.redis.delete(key)

    async def delete_pattern(self, pattern: str):
        keys = await self.redis.keys(pattern)
        if keys:
            await self.redis.delete(*keys)

    # ----- Shipping methods -----

    async def get_shipping_methods(self, store_id: int) -> Optional[List[dict]]:
        return await self.get(KEY_SHIPPING_METHODS.format(store_id=store_id))

    async def set_shipping_methods(self, store_id: int, methods: List[dict]):
        await self.set(KEY_SHIPPING_METHODS.format(store_id=store_id), methods, self.shipping_ttl)

    async def invalidate_shipping_methods(self):
        """Methods can be limited to stores, so every store's list goes."""
        await self.delete_pattern(KEY_SHIPPING_METHODS.format(store_id="*"))

    # ----- Category tree -----

    async def get_category_tree(self, include_hidden: bool) -> Optional[List[dict]]:
        return await self.get(KEY_CATEGORY_TREE.format(variant=_tree_variant(include_hidden)))

    async def set_category_tree(self, include_hidden: bool, tree: List[dict]):
        await self.set(KEY_CATEGORY_TREE.format(variant=_tree_variant(include_hidden)), tree, self.category_ttl)

    async def invalidate_category_tree(self):
        await self.delete_pattern(KEY_CATEGORY_TREE.format(variant="*"))

    async def ping(self) -> bool:
        return bool(await self.redis.ping())
