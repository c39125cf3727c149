"""Recherche dans le catalogue interne de commerces."""
from typing import Any, Dict, List, Optional

from discovery.config import settings
from discovery.exceptions import StorageUnavailable
from discovery.logger import logger
from discovery.models import BusinessLocation, BusinessResult, CategorySummary, SearchQuery
from discovery.scoring.geo import GeoPoint, bounding_box, distance_meters, within_radius
from discovery.search.interfaces import CatalogCriteria, CatalogReader


def compute_rating(rating_sum: Optional[float], rating_count: Optional[int]) -> Optional[float]:
    """ratingSum / ratingCount rounded to one decimal, None without reviews."""
    if not rating_count or rating_count <= 0:
        return None
    return round(float(rating_sum or 0) / rating_count, 1)


class LocalCatalogSearch:
    """
    Searches the platform's own catalog.

    The reader pushes the filters down to the store; every filter is
    checked again here on the returned rows so a result is never emitted
    with only part of the filters applied, whatever the reader does.
    """

    def __init__(self, reader: CatalogReader, candidate_limit: int = settings.LOCAL_CANDIDATE_LIMIT):
        self.reader = reader
        self.candidate_limit = candidate_limit

    def build_criteria(self, query: SearchQuery) -> CatalogCriteria:
        """Traduit la requête en critères de lecture pour le catalogue."""
        bbox = None
        if query.has_location:
            bbox = bounding_box(query.latitude, query.longitude, query.radius_meters)
        return CatalogCriteria(
            text=query.query,
            category_ids=tuple(query.category_ids),
            min_rating=query.rating,
            bbox=bbox,
            limit=self.candidate_limit,
        )

    async def search(self, query: SearchQuery) -> List[BusinessResult]:
        """
        Returns matching businesses (unordered) tagged `source = local`.

        Raises:
            StorageUnavailable: si le catalogue ne répond pas.
        """
        criteria = self.build_criteria(query)
        try:
            rows = await self.reader.fetch_businesses(criteria)
        except (ConnectionError, OSError) as e:
            raise StorageUnavailable("Business catalog unavailable", details={"error": str(e)}) from e

        results = []
        for row in rows:
            business = self.filter_row(row, query)
            if business is not None:
                results.append(business)

        logger.debug(
            "Local catalog: {kept}/{fetched} rows kept for '{query}'",
            kept=len(results), fetched=len(rows), query=query.query,
        )
        return results

    def filter_row(self, row: Dict[str, Any], query: SearchQuery) -> Optional[BusinessResult]:
        """Applies all filters to one row; None when it does not match."""
        if not self.matches_text(row, query.query):
            return None

        if query.category_ids:
            wanted = set(query.category_ids)
            # OU entre les catégories demandées
            if not any(str(c.get("id")) in wanted for c in row.get("categories") or []):
                return None

        rating_count = int(row.get("review_count") or 0)
        if query.rating is not None:
            if rating_count <= 0:
                return None
            if float(row.get("rating_sum") or 0) / rating_count < query.rating:
                return None

        business = self.to_result(row)
        if not query.has_location:
            return business
        return self.attach_distance(business, query)

    def matches_text(self, row: Dict[str, Any], text: str) -> bool:
        """Case-insensitive substring match on name, username and about."""
        needle = text.casefold()
        return any(
            needle in str(row.get(field) or "").casefold()
            for field in ("name", "username", "about")
        )

    def attach_distance(self, business: BusinessResult, query: SearchQuery) -> Optional[BusinessResult]:
        """
        Keeps only locations inside the radius, nearest first, and sets
        distance_meters from the nearest one. None when none is inside.
        """
        origin = GeoPoint(query.latitude, query.longitude)
        in_range = []
        for location in business.locations:
            point = GeoPoint.from_location(location)
            if point is None:
                continue
            dist = distance_meters(origin.lat, origin.lng, point.lat, point.lng)
            if within_radius(dist, query.radius_meters):
                in_range.append((dist, location))

        if not in_range:
            return None
        in_range.sort(key=lambda pair: pair[0])
        return business.model_copy(update={
            "locations": [loc for _, loc in in_range],
            "distance_meters": round(in_range[0][0], 1),
        })

    def to_result(self, row: Dict[str, Any]) -> BusinessResult:
        """Convertit une ligne brute du catalogue en BusinessResult."""
        rating_count = max(0, int(row.get("review_count") or 0))
        return BusinessResult(
            id=str(row["id"]),
            name=row.get("name"),
            username=row.get("username"),
            logo_url=row.get("logo_url"),
            about=row.get("about"),
            rating=compute_rating(row.get("rating_sum"), rating_count),
            rating_count=rating_count,
            source="local",
            categories=[
                CategorySummary(id=str(c["id"]), name=c.get("name") or "")
                for c in row.get("categories") or []
            ],
            locations=[
                BusinessLocation(
                    id=str(loc["id"]) if loc.get("id") is not None else None,
                    address=loc.get("address") or "",
                    latitude=loc.get("latitude"),
                    longitude=loc.get("longitude"),
                    city=loc.get("city"),
                    state=loc.get("state"),
                    country=loc.get("country"),
                )
                for loc in row.get("locations") or []
            ],
        )
