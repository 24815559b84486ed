import json
from functools import lru_cache
from typing import Any, Optional
from cachetools import TTLCache
import redis
from shared.core import get_logger
from wholesale.core_settings import get_settings

logger = get_logger(__name__)

KEY_PREFIX = "products:"


class ProductListingCache:
    """Short-lived cache of anonymous product listings.

    Entries are keyed by category and role, expire after ``ttl`` seconds and
    are dropped wholesale whenever a product changes. Redis is used when
    reachable so several workers share one view; otherwise a bounded
    in-process ``TTLCache`` holds the entries.
    """

    def __init__(self, ttl: int = 60, maxsize: int = 256, redis_client: Optional[redis.Redis] = None):
        self.ttl = ttl
        self.redis_client = redis_client
        self.local_cache = TTLCache(maxsize=maxsize, ttl=ttl)

    @staticmethod
    def key(category: Optional[str], role: str) -> str:
        return f"{KEY_PREFIX}{category or 'All'}:{role}"

    def get(self, key: str) -> Any:
        if self.redis_client:
            try:
                value = self.redis_client.get(key)
                if value is not None:
                    return json.loads(value)
            except redis.RedisError as exc:
                logger.warning(f"Product cache read failed, using local cache: {exc}")
        return self.local_cache.get(key)

    def set(self, key: str, value: Any) -> None:
        if self.redis_client:
            try:
                self.redis_client.setex(key, self.ttl, json.dumps(value, default=str))
                return
            except redis.RedisError as exc:
                logger.warning(f"Product cache write failed, using local cache: {exc}")
        self.local_cache[key] = value

    def invalidate(self) -> None:
        """Drop every listing; called on any product mutation."""
        self.local_cache.clear()
        if self.redis_client:
            try:
                for key in self.redis_client.scan_iter(match=f"{KEY_PREFIX}*"):
                    self.redis_client.delete(key)
            except redis.RedisError as exc:
                logger.warning(f"Product cache purge failed: {exc}")


@lru_cache
def get_product_cache() -> ProductListingCache:
    settings = get_settings()
    redis_client = None
    if settings.REDIS_URL:
        try:
            redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            redis_client.ping()
        except redis.RedisError as exc:
            logger.warning(f"Redis unavailable, product cache stays in memory: {exc}")
            redis_client = None
    return ProductListingCache(
        ttl=settings.PRODUCT_CACHE_TTL,
        maxsize=settings.PRODUCT_CACHE_SIZE,
        redis_client=redis_client,
    )
