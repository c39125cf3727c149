"""Client for the Google Places provider, mapped to BusinessResult."""
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from discovery.config import settings
from discovery.exceptions import ExternalProviderDegraded
from discovery.logger import logger
from discovery.models import BusinessLocation, BusinessResult, CategorySummary, ExternalSupplement

_OK_STATUSES = {"OK", "ZERO_RESULTS"}


def humanize_type(place_type: str) -> str:
    """'meal_takeaway' -> 'Meal Takeaway'."""
    return place_type.replace("_", " ").title()


class GooglePlacesClient:
    """
    PlacesClient over the Places web service.

    Nearby search is used when a location is given, text search otherwise.
    Every failure (transport, HTTP status, provider status, bad payload)
    is raised as ExternalProviderDegraded; the caller decides to carry on
    without external results.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._client = http_client
        self.api_key = settings.GOOGLE_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.PLACES_BASE_URL).rstrip("/")
        self.timeout = settings.PLACES_TIMEOUT_SECONDS if timeout is None else timeout
        if not self.api_key:
            logger.warning("GOOGLE_API_KEY is not configured; external results are disabled.")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_meters: Optional[int] = None,
    ) -> List[BusinessResult]:
        """One outbound request; returns at most PLACES_MAX_RESULTS businesses."""
        if not self.is_configured():
            return []

        if latitude is not None and longitude is not None:
            endpoint = "nearbysearch"
            params = {
                "location": f"{latitude},{longitude}",
                "radius": str(radius_meters or settings.DEFAULT_RADIUS_METERS),
                "keyword": query,
                "type": "establishment",
            }
        else:
            endpoint = "textsearch"
            params = {"query": query, "type": "establishment"}
        params["key"] = self.api_key

        payload = await self._get_json(f"{self.base_url}/{endpoint}/json", params)
        places = payload.get("results") or []
        if not isinstance(places, list):
            raise ExternalProviderDegraded("Places returned malformed results", details={"reason": "malformed"})

        results = []
        for place in places[:settings.PLACES_MAX_RESULTS]:
            try:
                business = self.to_result(place)
            except (TypeError, ValueError, AttributeError, ValidationError) as e:
                # Une fiche mal formée est ignorée, pas toute la réponse
                logger.warning("Skipping malformed place: {error}", error=e)
                continue
            if business is not None:
                results.append(business)
        return results

    async def _get_json(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = await self._client.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise ExternalProviderDegraded("Places request timed out", details={"reason": "timeout"}) from e
        except httpx.HTTPError as e:
            raise ExternalProviderDegraded("Places request failed", details={"reason": str(e)}) from e
        except ValueError as e:
            raise ExternalProviderDegraded("Places returned invalid JSON", details={"reason": str(e)}) from e

        if not isinstance(payload, dict):
            raise ExternalProviderDegraded("Places returned an unexpected payload", details={"reason": "malformed"})

        status = payload.get("status")
        if status not in _OK_STATUSES:
            logger.error(
                "Places search failed: status={status}, error_message={message}",
                status=status, message=payload.get("error_message"),
            )
            raise ExternalProviderDegraded(
                payload.get("error_message") or f"Places status {status}",
                details={"reason": status},
            )
        return payload

    def photo_url(self, photo_reference: str, max_width: int = settings.PLACES_PHOTO_MAX_WIDTH) -> str:
        """URL of a provider photo."""
        query = httpx.QueryParams(
            {"key": self.api_key, "photoreference": photo_reference, "maxwidth": str(max_width)}
        )
        return f"{self.base_url}/photo?{query}"

    def to_result(self, place: Dict[str, Any]) -> Optional[BusinessResult]:
        """
        Maps one provider place; optional fields degrade to null/empty.

        Places without a place_id are skipped: no stable id can be built.
        """
        place_id = place.get("place_id")
        if not place_id:
            return None

        photos = place.get("photos") or []
        photo_ref = photos[0].get("photo_reference") if photos else None
        photo_url = self.photo_url(photo_ref) if photo_ref else None

        types = [t for t in place.get("types") or [] if isinstance(t, str)]
        rating = place.get("rating")
        rating = float(rating) if rating is not None else None
        rating_count = int(place.get("user_ratings_total") or 0)

        location = (place.get("geometry") or {}).get("location") or {}
        opening_hours = place.get("opening_hours") or {}

        return BusinessResult(
            id=f"{settings.EXTERNAL_ID_PREFIX}{place_id}",
            name=place.get("name"),
            username=None,
            logo_url=photo_url,
            about=None,
            rating=rating,
            rating_count=max(0, rating_count),
            source="external",
            categories=[
                CategorySummary(id=t, name=humanize_type(t))
                for t in types[:settings.PLACES_CATEGORY_LIMIT]
            ],
            locations=[
                BusinessLocation(
                    id=f"{settings.EXTERNAL_ID_PREFIX}location_{place_id}",
                    address=place.get("vicinity") or place.get("formatted_address") or "",
                    latitude=location.get("lat"),
                    longitude=location.get("lng"),
                )
            ],
            external=ExternalSupplement(
                place_id=place_id,
                rating=rating,
                rating_count=max(0, rating_count),
                photo_url=photo_url,
                types=types,
                open_now=opening_hours.get("open_now"),
            ),
        )
