"""Collaborator interfaces injected into the search service."""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

from discovery.models import BusinessResult, SearchHistoryEntry

BoundingBox = Tuple[float, float, float, float]


@dataclass(frozen=True)
class CatalogCriteria:
    """
    Read query sent to the catalog store.

    `bbox` is a coarse (min_lat, max_lat, min_lon, max_lon) pre-filter;
    the exact radius test is done by the caller on the returned rows.
    """
    text: str
    category_ids: Tuple[str, ...] = ()
    min_rating: Optional[float] = None
    bbox: Optional[BoundingBox] = None
    limit: int = 200


class CatalogReader(Protocol):
    """Read-only access to the business catalog."""

    async def fetch_businesses(self, criteria: CatalogCriteria) -> List[Dict[str, Any]]:
        """
        Returns raw business rows with nested `categories` and `locations`.

        Row keys: id, username, name, logo_url, about, rating_sum,
        review_count, categories [{id, name}], locations [{id, address,
        latitude, longitude, city, state, country}].
        """
        ...


class PlacesClient(Protocol):
    """External maps/places provider, already mapped to BusinessResult."""

    async def search(
        self,
        query: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_meters: Optional[int] = None,
    ) -> List[BusinessResult]:
        """Raises ExternalProviderDegraded on provider failure."""
        ...


class CacheStore(Protocol):
    """Key-value store with TTL and capped sorted sets (Redis)."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, expire: int = 300) -> None:
        ...

    async def delete(self, key: str) -> int:
        ...

    async def add_capped(
        self, key: str, member: str, score: float, capacity: int, ttl: int
    ) -> None:
        """Adds or re-scores member, then keeps only the `capacity` highest scores."""
        ...

    async def members_newest_first(self, key: str) -> List[str]:
        ...

    async def pop_all(self, key: str) -> int:
        """Atomically removes the whole set and returns how many members it had."""
        ...


class HistoryStore(Protocol):
    """Durable search history."""

    async def record(self, user_id: str, search_text: str) -> None:
        ...

    async def page(
        self, user_id: str, page: int, limit: int
    ) -> Tuple[List[SearchHistoryEntry], int]:
        """Returns (entries newest first, total count)."""
        ...
