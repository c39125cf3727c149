"""Modèles Pydantic pour les requêtes, résultats et réponses de recherche."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from discovery.config import settings

SortBy = Literal["rating", "reviews", "name", "distance"]
SortOrder = Literal["asc", "desc"]
Source = Literal["local", "external", "merged"]


class CamelModel(BaseModel):  # pylint: disable=too-few-public-methods
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchQuery(CamelModel):
    """One parsed search request. Built per call and never mutated."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )

    query: str = Field(min_length=1, max_length=settings.MAX_QUERY_LENGTH)
    category_ids: List[str] = Field(default_factory=list, max_length=settings.MAX_CATEGORY_IDS)
    rating: Optional[float] = Field(default=None, ge=1.0, le=5.0)
    radius_meters: int = Field(
        default=settings.DEFAULT_RADIUS_METERS,
        ge=settings.MIN_RADIUS_METERS,
        le=settings.MAX_RADIUS_METERS,
    )
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=settings.DEFAULT_LIMIT, ge=1, le=settings.MAX_LIMIT)
    sort_by: SortBy = "rating"
    sort_order: SortOrder = "desc"

    @field_validator("category_ids")
    @classmethod
    def _unique_category_ids(cls, value: List[str]) -> List[str]:
        # Ensemble d'identifiants : on retire les doublons en gardant l'ordre
        return list(dict.fromkeys(v for v in value if v))

    @model_validator(mode="after")
    def _location_pair(self) -> "SearchQuery":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

    @property
    def has_location(self) -> bool:
        """True when a (latitude, longitude) pair was supplied."""
        return self.latitude is not None and self.longitude is not None

    @property
    def effective_sort_by(self) -> SortBy:
        """Distance sort needs a location; without one it falls back to rating."""
        if self.sort_by == "distance" and not self.has_location:
            return "rating"
        return self.sort_by


class CategorySummary(CamelModel):  # pylint: disable=too-few-public-methods
    """Category attached to a business."""
    id: str
    name: str


class BusinessLocation(CamelModel):  # pylint: disable=too-few-public-methods
    """A physical location of a business."""
    id: Optional[str] = None
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class ExternalSupplement(CamelModel):  # pylint: disable=too-few-public-methods
    """Provider-only data kept alongside a merged local record."""
    place_id: str
    rating: Optional[float] = None
    rating_count: int = 0
    photo_url: Optional[str] = None
    types: List[str] = Field(default_factory=list)
    open_now: Optional[bool] = None


class BusinessResult(CamelModel):  # pylint: disable=too-few-public-methods
    """A business returned by the engine, from either source or both."""
    id: str
    name: Optional[str] = None
    username: Optional[str] = None
    logo_url: Optional[str] = None
    about: Optional[str] = None
    rating: Optional[float] = None
    rating_count: int = Field(default=0, ge=0)
    distance_meters: Optional[float] = None
    source: Source = "local"
    categories: List[CategorySummary] = Field(default_factory=list)
    locations: List[BusinessLocation] = Field(default_factory=list)
    external: Optional[ExternalSupplement] = None


class Pagination(CamelModel):  # pylint: disable=too-few-public-methods
    """Pagination metadata."""
    page: int
    limit: int
    total: int
    total_pages: int


class SourceCounts(CamelModel):  # pylint: disable=too-few-public-methods
    """How many records each upstream contributed and how many collapsed."""
    local: int = 0
    external: int = 0
    deduplicated: int = 0


class SearchFilters(CamelModel):  # pylint: disable=too-few-public-methods
    """Filters echoed back to the caller."""
    category_ids: List[str] = Field(default_factory=list)
    rating: Optional[float] = None
    radius_meters: int = settings.DEFAULT_RADIUS_METERS


class SearchResponse(CamelModel):  # pylint: disable=too-few-public-methods
    """Réponse de recherche."""
    businesses: List[BusinessResult]
    pagination: Pagination
    sources: SourceCounts
    query: str
    filters: SearchFilters


class CachedSearch(CamelModel):  # pylint: disable=too-few-public-methods
    """Full ranked result set stored in the result cache, before pagination."""
    businesses: List[BusinessResult]
    sources: SourceCounts


class SearchHistoryEntry(CamelModel):  # pylint: disable=too-few-public-methods
    """A persisted search, written once per successful search."""
    id: Optional[str] = None
    user_id: str
    search_text: str
    created_at: datetime
    status: str = "ACTIVE"


class SearchHistoryPage(CamelModel):  # pylint: disable=too-few-public-methods
    """One page of a user's search history, newest first."""
    searches: List[SearchHistoryEntry]
    pagination: Pagination


class RecentSearchesResponse(CamelModel):  # pylint: disable=too-few-public-methods
    """Recent raw query strings, most recent first."""
    searches: List[str]
    count: int


class ClearRecentSearchesResponse(CamelModel):  # pylint: disable=too-few-public-methods
    """Result of clearing the recent-search set."""
    cleared_count: int
