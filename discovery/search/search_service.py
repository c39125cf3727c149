"""Module contenant le service de recherche hybride (catalogue + Google Places)."""
import asyncio
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Set, Union

import psutil
from pydantic import ValidationError

from discovery.cache import SearchCache
from discovery.config import settings
from discovery.exceptions import (
    CacheUnavailable,
    ExternalProviderDegraded,
    QueryValidationError,
    SearchError,
)
from discovery.logger import logger
from discovery.models import (
    BusinessResult,
    CachedSearch,
    ClearRecentSearchesResponse,
    Pagination,
    RecentSearchesResponse,
    SearchFilters,
    SearchHistoryPage,
    SearchQuery,
    SearchResponse,
    SourceCounts,
)
from discovery.scoring.geo import GeoPoint, nearest, within_radius
from discovery.scoring.ranking import Ranker, paginate
from discovery.search.catalog import LocalCatalogSearch
from discovery.search.deduplication import DedupOutcome, Deduplicator
from discovery.search.interfaces import HistoryStore, PlacesClient
from discovery.utils.retry import retry_async


@dataclass
class SearchContext:
    """Contexte d'une requête de recherche."""
    user_id: str
    query: SearchQuery
    start_time: float


class SearchService:
    """
    Entry point of the discovery engine.

    Validates the query, serves it from the result cache when possible,
    otherwise fetches local and external candidates concurrently, merges,
    ranks and paginates them. History and cache writes run as background
    tasks and never delay or fail the response.
    """

    def __init__(
        self,
        catalog: LocalCatalogSearch,
        places: PlacesClient,
        cache: SearchCache,
        history: HistoryStore,
        deduplicator: Optional[Deduplicator] = None,
        ranker: Optional[Ranker] = None,
        external_timeout: float = settings.PLACES_TIMEOUT_SECONDS,
        result_cache_enabled: bool = settings.RESULT_CACHE_ENABLED,
    ):
        self.catalog = catalog
        self.places = places
        self.cache = cache
        self.history = history
        self.deduplicator = deduplicator or Deduplicator()
        self.ranker = ranker or Ranker()
        self.external_timeout = external_timeout
        self.result_cache_enabled = result_cache_enabled
        self.external_degradations = 0
        self._background: Set[asyncio.Task] = set()

    # -----------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------
    @staticmethod
    def parse_query(raw: Union[SearchQuery, Mapping[str, Any]]) -> SearchQuery:
        """
        Builds a SearchQuery, or raises QueryValidationError.

        Accepts camelCase or snake_case keys.
        """
        if isinstance(raw, SearchQuery):
            return raw
        try:
            return SearchQuery.model_validate(raw)
        except ValidationError as e:
            raise QueryValidationError(
                "Invalid search query", details=json.loads(e.json(include_url=False))
            ) from e

    # -----------------------------------------------------------------
    # Recherche
    # -----------------------------------------------------------------
    async def search(
            self,
            user_id: str,
            raw_query: Union[SearchQuery, Mapping[str, Any]]
        ) -> SearchResponse:
        """Effectue une recherche en utilisant le cache de résultats.

        Args:
            user_id: Caller id, used to scope history.
            raw_query: A SearchQuery or its raw parameters.

        Returns:
            The requested page plus `sources` and `pagination` metadata.

        Raises:
            QueryValidationError: before any collaborator is touched.
            StorageUnavailable: when the local catalog cannot be read.
        """
        query = self.parse_query(raw_query)
        ctx = SearchContext(user_id=user_id, query=query, start_time=time.time())

        cached = await self._cached_results(query)
        if cached is not None:
            logger.info("Cache HIT for '{query}'", query=query.query)
            self._record_history(ctx)
            businesses = cached.businesses
            if query.has_location:
                # Distances recalculées depuis la position exacte de l'appelant
                businesses = self.ranker.rank(self._locate(businesses, query), query)
            return self._build_response(query, businesses, cached.sources)

        logger.info("Cache MISS for '{query}'", query=query.query)
        outcome = await self._execute_search(query)
        ranked = self.ranker.rank(outcome.businesses, query)

        self._record_history(ctx)
        if self.result_cache_enabled:
            snapshot = CachedSearch(businesses=ranked, sources=outcome.sources)
            self._spawn(lambda: self.cache.set_results(query, snapshot), "result cache write")

        duration = time.time() - ctx.start_time
        memory_mb = psutil.Process().memory_info().rss / 1024 / 1024
        logger.info(
            "Search '{query}': local={local} external={external} merged={merged} | "
            "Durée = {duration:.4f}s | RAM = {memory:.2f} Mo",
            query=query.query,
            local=outcome.local_count,
            external=outcome.external_count,
            merged=outcome.deduplicated,
            duration=duration,
            memory=memory_mb,
        )
        return self._build_response(query, ranked, outcome.sources)

    async def _cached_results(self, query: SearchQuery) -> Optional[CachedSearch]:
        if not self.result_cache_enabled:
            return None
        try:
            return await self.cache.get_results(query)
        except CacheUnavailable as e:
            logger.warning("Result cache unavailable, searching without it: {error}", error=e)
            return None

    async def _execute_search(self, query: SearchQuery) -> DedupOutcome:
        """Fan-out local/external, join, then merge."""
        external_task = asyncio.create_task(self._fetch_external(query))
        try:
            local_results = await self.catalog.search(query)
        except BaseException:
            external_task.cancel()
            raise
        external_results = await external_task

        if query.has_location:
            external_results = self._locate(external_results, query)
        return self.deduplicator.deduplicate(local_results, external_results)

    async def _fetch_external(self, query: SearchQuery) -> List[BusinessResult]:
        """External results, or [] when the provider is slow or failing."""
        radius = query.radius_meters if query.has_location else None
        try:
            return await asyncio.wait_for(
                self.places.search(query.query, query.latitude, query.longitude, radius),
                timeout=self.external_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "External provider timed out after {timeout}s for '{query}'; local results only",
                timeout=self.external_timeout, query=query.query,
            )
        except ExternalProviderDegraded as e:
            logger.warning(
                "External provider degraded for '{query}' ({reason}); local results only",
                query=query.query, reason=e.message,
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception(
                "Unexpected external provider failure for '{query}'; local results only",
                query=query.query,
            )
        self.external_degradations += 1
        return []

    def _locate(self, results: List[BusinessResult], query: SearchQuery) -> List[BusinessResult]:
        """
        Sets distance_meters from the nearest location and drops results
        outside the radius. Results without coordinates are kept as is.
        """
        origin = GeoPoint(query.latitude, query.longitude)
        located = []
        for business in results:
            found = nearest(origin, business.locations)
            if found is None:
                located.append(business)
                continue
            if not within_radius(found[0], query.radius_meters):
                continue
            located.append(business.model_copy(update={"distance_meters": round(found[0], 1)}))
        return located

    def _build_response(
        self,
        query: SearchQuery,
        ranked: List[BusinessResult],
        sources: SourceCounts,
    ) -> SearchResponse:
        page, pagination = paginate(ranked, query.page, query.limit)
        return SearchResponse(
            businesses=page,
            pagination=pagination,
            sources=sources,
            query=query.query,
            filters=SearchFilters(
                category_ids=list(query.category_ids),
                rating=query.rating,
                radius_meters=query.radius_meters,
            ),
        )

    # -----------------------------------------------------------------
    # Écritures en arrière-plan
    # -----------------------------------------------------------------
    def _record_history(self, ctx: SearchContext) -> None:
        text = ctx.query.query
        self._spawn(lambda: self.history.record(ctx.user_id, text), "history write")
        self._spawn(lambda: self.cache.add_recent(ctx.user_id, text), "recent search write")

    def _spawn(self, operation: Callable[[], Awaitable[Any]], name: str) -> None:
        task = asyncio.create_task(self._run_background(operation, name))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_background(self, operation: Callable[[], Awaitable[Any]], name: str) -> None:
        try:
            await retry_async(
                operation,
                max_attempts=settings.BACKGROUND_RETRY_ATTEMPTS,
                base_delay=settings.BACKGROUND_RETRY_DELAY_SECONDS,
                retry_on=(SearchError,),
                operation_name=name,
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception("Background {name} failed", name=name)

    async def drain(self) -> None:
        """Waits for pending background writes (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background))

    # -----------------------------------------------------------------
    # Historique
    # -----------------------------------------------------------------
    async def recent_searches(self, user_id: str) -> RecentSearchesResponse:
        """Raises CacheUnavailable when the store is down."""
        searches = await self.cache.recent(user_id)
        return RecentSearchesResponse(searches=searches, count=len(searches))

    async def clear_recent_searches(self, user_id: str) -> ClearRecentSearchesResponse:
        """Raises CacheUnavailable when the store is down."""
        cleared = await self.cache.clear_recent(user_id)
        logger.info("Cleared {count} recent searches for user {user_id}", count=cleared, user_id=user_id)
        return ClearRecentSearchesResponse(cleared_count=cleared)

    async def search_history(
        self, user_id: str, page: int = 1, limit: int = settings.DEFAULT_LIMIT
    ) -> SearchHistoryPage:
        """Durable history, newest first. Raises StorageUnavailable when the store is down."""
        if page < 1:
            raise QueryValidationError("Page must be a positive number")
        if limit < 1 or limit > settings.MAX_LIMIT:
            raise QueryValidationError(f"Limit must be between 1 and {settings.MAX_LIMIT}")

        entries, total = await self.history.page(user_id, page, limit)
        return SearchHistoryPage(
            searches=entries,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=max(1, math.ceil(total / limit)),
            ),
        )
