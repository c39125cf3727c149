from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import make_business
from discovery.cache import CacheManager, SearchCache
from discovery.exceptions import CacheUnavailable
from discovery.models import CachedSearch, SearchQuery, SourceCounts


class TestRecentSearches:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, search_cache, clock):
        for text in ("pizza", "sushi", "tacos"):
            await search_cache.add_recent("user-1", text)
            clock.advance()
        assert await search_cache.recent("user-1") == ["tacos", "sushi", "pizza"]

    @pytest.mark.asyncio
    async def test_repeat_refreshes_without_duplicate(self, search_cache, clock):
        for text in ("pizza", "sushi", "pizza"):
            await search_cache.add_recent("user-1", text)
            clock.advance()
        assert await search_cache.recent("user-1") == ["pizza", "sushi"]

    @pytest.mark.asyncio
    async def test_capacity_evicts_oldest(self, search_cache, clock):
        for i in range(12):
            await search_cache.add_recent("user-1", f"query {i}")
            clock.advance()

        recent = await search_cache.recent("user-1")
        assert len(recent) == 10
        assert recent[0] == "query 11"
        assert "query 0" not in recent and "query 1" not in recent

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, search_cache):
        await search_cache.add_recent("user-1", "pizza")
        assert await search_cache.recent("user-2") == []

    @pytest.mark.asyncio
    async def test_clear_returns_count(self, search_cache, clock):
        for text in ("pizza", "sushi"):
            await search_cache.add_recent("user-1", text)
            clock.advance()
        assert await search_cache.clear_recent("user-1") == 2
        assert await search_cache.recent("user-1") == []
        assert await search_cache.clear_recent("user-1") == 0

    @pytest.mark.asyncio
    async def test_ttl_is_applied(self, search_cache, cache_store):
        await search_cache.add_recent("user-1", "pizza")
        assert cache_store.ttls["recent_searches:user-1"] == search_cache.recent_ttl

    @pytest.mark.asyncio
    async def test_store_down(self, search_cache, cache_store):
        cache_store.down = True
        with pytest.raises(CacheUnavailable):
            await search_cache.add_recent("user-1", "pizza")
        with pytest.raises(CacheUnavailable):
            await search_cache.recent("user-1")


class TestResultKey:
    def test_text_is_normalized(self, search_cache):
        a = SearchQuery(query="Tony's  Pizza")
        b = SearchQuery(query="  tony's pizza ")
        assert search_cache.result_key(a) == search_cache.result_key(b)

    def test_pagination_not_in_key(self, search_cache):
        assert search_cache.result_key(SearchQuery(query="pizza", page=1, limit=20)) == \
            search_cache.result_key(SearchQuery(query="pizza", page=3, limit=5))

    def test_category_order_ignored(self, search_cache):
        assert search_cache.result_key(SearchQuery(query="pizza", category_ids=["a", "b"])) == \
            search_cache.result_key(SearchQuery(query="pizza", category_ids=["b", "a"]))

    def test_filters_and_sort_change_key(self, search_cache):
        base = search_cache.result_key(SearchQuery(query="pizza"))
        assert base != search_cache.result_key(SearchQuery(query="pizza", rating=4.0))
        assert base != search_cache.result_key(SearchQuery(query="pizza", sort_by="name"))
        assert base != search_cache.result_key(SearchQuery(query="pizza", latitude=1.0, longitude=2.0))

    def test_radius_ignored_without_location(self, search_cache):
        assert search_cache.result_key(SearchQuery(query="pizza", radius_meters=1000)) == \
            search_cache.result_key(SearchQuery(query="pizza", radius_meters=9000))

    def test_nearby_locations_share_key(self, search_cache):
        a = SearchQuery(query="pizza", latitude=48.85661, longitude=2.35221)
        b = SearchQuery(query="pizza", latitude=48.85670, longitude=2.35238)
        assert search_cache.result_key(a) == search_cache.result_key(b)
        assert search_cache.result_key(a).startswith("search:results:")


class TestResultCache:
    @pytest.mark.asyncio
    async def test_round_trip(self, search_cache, cache_store):
        query = SearchQuery(query="pizza")
        cached = CachedSearch(
            businesses=[make_business("u1", "Tony's Pizza", lat=1.0, lon=2.0, rating=4.7, rating_count=20)],
            sources=SourceCounts(local=1, external=0, deduplicated=0),
        )
        await search_cache.set_results(query, cached)

        assert await search_cache.get_results(query) == cached
        assert cache_store.ttls[search_cache.result_key(query)] == search_cache.result_ttl

    @pytest.mark.asyncio
    async def test_miss(self, search_cache):
        assert await search_cache.get_results(SearchQuery(query="pizza")) is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_a_miss(self, search_cache, cache_store):
        query = SearchQuery(query="pizza")
        cache_store.values[search_cache.result_key(query)] = '{"businesses": "nope"}'
        assert await search_cache.get_results(query) is None

    @pytest.mark.asyncio
    async def test_invalidate(self, search_cache):
        query = SearchQuery(query="pizza")
        await search_cache.set_results(query, CachedSearch(businesses=[], sources=SourceCounts()))
        assert await search_cache.invalidate_results(query) is True
        assert await search_cache.get_results(query) is None
        assert await search_cache.invalidate_results(query) is False


class FakePipeline:
    """Enregistre les commandes d'un pipeline redis."""

    def __init__(self, results):
        self.commands = []
        self.results = results

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        def command(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self
        return command

    async def execute(self):
        return self.results


class TestCacheManager:
    @pytest.mark.asyncio
    async def test_set_passes_expiry(self):
        client = AsyncMock()
        await CacheManager(client=client).set("k", "v", expire=60)
        client.set.assert_awaited_once_with("k", "v", ex=60)

    @pytest.mark.asyncio
    async def test_redis_error_becomes_cache_unavailable(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("Connection refused")
        with pytest.raises(CacheUnavailable) as exc_info:
            await CacheManager(client=client).get("k")
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_add_capped_trims_in_one_transaction(self):
        pipeline = FakePipeline([1, 0, True])
        client = AsyncMock()
        client.pipeline = lambda transaction: pipeline

        await CacheManager(client=client).add_capped("recent_searches:u", "pizza", 1000.0, 10, 3600)

        assert [name for name, _, _ in pipeline.commands] == ["zadd", "zremrangebyrank", "expire"]
        assert pipeline.commands[1][1] == ("recent_searches:u", 0, -11)

    @pytest.mark.asyncio
    async def test_pop_all_returns_former_size(self):
        client = AsyncMock()
        client.pipeline = lambda transaction: FakePipeline([3, 1])
        assert await CacheManager(client=client).pop_all("recent_searches:u") == 3

    @pytest.mark.asyncio
    async def test_members_newest_first(self):
        client = AsyncMock()
        client.zrange.return_value = ["b", "a"]
        assert await CacheManager(client=client).members_newest_first("k") == ["b", "a"]
        client.zrange.assert_awaited_once_with("k", 0, -1, desc=True)
