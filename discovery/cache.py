"""Cache management module: Redis store, recent searches and cached result sets."""
import hashlib
import json
import time
from contextlib import contextmanager
from typing import Callable, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from discovery.config import settings
from discovery.exceptions import CacheUnavailable
from discovery.logger import logger
from discovery.models import CachedSearch, SearchQuery
from discovery.scoring.geo import location_bucket
from discovery.search.interfaces import CacheStore


@contextmanager
def _redis_errors(operation: str):
    """Traduit les erreurs Redis en CacheUnavailable."""
    try:
        yield
    except (RedisError, OSError) as e:
        raise CacheUnavailable(f"Cache {operation} failed", details={"error": str(e)}) from e


class CacheManager:
    """A class to manage the Redis cache (implements CacheStore)."""

    def __init__(self, redis_url: Optional[str] = None, client=None):
        """Initialize the CacheManager."""
        self.redis_url = redis_url or settings.REDIS_URL
        self.redis = client or redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)

    async def ping(self) -> bool:
        """Check the Redis connection."""
        with _redis_errors("ping"):
            return await self.redis.ping()

    async def get(self, key: str) -> Optional[str]:
        """Get a value from the cache."""
        with _redis_errors("get"):
            return await self.redis.get(key)

    async def set(self, key: str, value: str, expire: int = 300) -> None:
        """Set a value in the cache."""
        with _redis_errors("set"):
            await self.redis.set(key, value, ex=expire)

    async def delete(self, key: str) -> int:
        """Delete a key."""
        with _redis_errors("delete"):
            return await self.redis.delete(key)

    async def add_capped(
        self, key: str, member: str, score: float, capacity: int, ttl: int
    ) -> None:
        """ZADD then trim to the `capacity` highest scores, in one transaction."""
        with _redis_errors("zadd"):
            async with self.redis.pipeline(transaction=True) as pipe:
                await (
                    pipe.zadd(key, {member: score})
                    .zremrangebyrank(key, 0, -(capacity + 1))
                    .expire(key, ttl)
                    .execute()
                )

    async def members_newest_first(self, key: str) -> List[str]:
        """Members by descending score."""
        with _redis_errors("zrange"):
            return await self.redis.zrange(key, 0, -1, desc=True)

    async def pop_all(self, key: str) -> int:
        """Remove the whole sorted set atomically, return its former size."""
        with _redis_errors("clear"):
            async with self.redis.pipeline(transaction=True) as pipe:
                count, _ = await pipe.zcard(key).delete(key).execute()
        return int(count or 0)

    async def close(self):
        """Close the Redis connection."""
        await self.redis.aclose()


class SearchCache:
    """
    Per-user recent searches and a short-TTL, query-scoped result cache.

    Recent searches live in one sorted set per user scored by time in
    milliseconds: re-adding a query only refreshes its score, and the set
    is trimmed to `capacity` members, oldest first. Every method raises
    CacheUnavailable when the store is down; callers on the search path
    treat that as best-effort.
    """

    RECENT_KEY = "recent_searches:{user_id}"
    RESULT_KEY = "search:results:{digest}"

    def __init__(
        self,
        store: CacheStore,
        capacity: int = settings.RECENT_SEARCH_CAPACITY,
        recent_ttl: int = settings.RECENT_SEARCH_TTL_SECONDS,
        result_ttl: int = settings.RESULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.capacity = capacity
        self.recent_ttl = recent_ttl
        self.result_ttl = result_ttl
        self.clock = clock

    def recent_key(self, user_id: str) -> str:
        return self.RECENT_KEY.format(user_id=user_id)

    async def add_recent(self, user_id: str, query_text: str) -> None:
        """Ajoute (ou rafraîchit) une recherche récente."""
        await self.store.add_capped(
            self.recent_key(user_id),
            query_text,
            self.clock() * 1000,
            self.capacity,
            self.recent_ttl,
        )

    async def recent(self, user_id: str) -> List[str]:
        """Recherches récentes, la plus récente d'abord."""
        return await self.store.members_newest_first(self.recent_key(user_id))

    async def clear_recent(self, user_id: str) -> int:
        """Supprime toutes les recherches récentes ; retourne leur nombre."""
        return await self.store.pop_all(self.recent_key(user_id))

    def result_key(self, query: SearchQuery) -> str:
        """
        Cache key from the normalized (query, filters, location bucket, sort).

        Pagination is not part of the key: the whole ranked list is cached
        and pages are sliced from it. The radius only counts when a
        location is given, since it is ignored otherwise.
        """
        if query.has_location:
            bucket = location_bucket(query.latitude, query.longitude)
            radius = query.radius_meters
        else:
            bucket, radius = None, None
        parts = {
            "q": " ".join(query.query.casefold().split()),
            "categories": sorted(query.category_ids),
            "rating": query.rating,
            "radius": radius,
            "bucket": bucket,
            "sort": [query.effective_sort_by, query.sort_order],
        }
        digest = hashlib.sha1(
            json.dumps(parts, sort_keys=True).encode("utf-8"), usedforsecurity=False
        ).hexdigest()
        return self.RESULT_KEY.format(digest=digest)

    async def get_results(self, query: SearchQuery) -> Optional[CachedSearch]:
        """Cached ranked list for this query, None on miss or unreadable entry."""
        raw = await self.store.get(self.result_key(query))
        if not raw:
            return None
        try:
            return CachedSearch.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry for '{query}'", query=query.query)
            return None

    async def set_results(self, query: SearchQuery, cached: CachedSearch) -> None:
        """Stocke la liste classée complète avec un TTL court."""
        await self.store.set(
            self.result_key(query),
            cached.model_dump_json(by_alias=True),
            expire=self.result_ttl,
        )

    async def invalidate_results(self, query: SearchQuery) -> bool:
        """Removes the cached list for this query; True if something was removed."""
        return bool(await self.store.delete(self.result_key(query)))
