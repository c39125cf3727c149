# tests/conftest.py
import asyncio
import copy
import os
from datetime import datetime, timedelta, timezone

# Pas de fichiers de logs pendant les tests
os.environ.setdefault("LOG_TO_FILES", "false")

import pytest  # noqa: E402

from discovery.cache import SearchCache  # noqa: E402
from discovery.exceptions import CacheUnavailable, StorageUnavailable  # noqa: E402
from discovery.models import BusinessLocation, BusinessResult, SearchHistoryEntry  # noqa: E402
from discovery.search.catalog import LocalCatalogSearch  # noqa: E402
from discovery.search.search_service import SearchService  # noqa: E402


# --- Constructeurs de données ---

def make_row(
    business_id,
    name,
    rating_sum=0,
    review_count=0,
    lat=None,
    lon=None,
    username=None,
    about=None,
    categories=(),
    address="",
):
    """Raw catalog row as returned by a CatalogReader."""
    locations = []
    if lat is not None and lon is not None:
        locations.append({
            "id": f"loc-{business_id}", "address": address, "latitude": lat, "longitude": lon,
            "city": None, "state": None, "country": None,
        })
    return {
        "id": business_id,
        "username": username or (name or "").lower().replace(" ", "_"),
        "name": name,
        "logo_url": None,
        "about": about,
        "rating_sum": rating_sum,
        "review_count": review_count,
        "categories": [{"id": cid, "name": cid.title()} for cid in categories],
        "locations": locations,
    }


def make_business(business_id, name, source="local", lat=None, lon=None, rating=None,
                  rating_count=0, distance=None):
    """BusinessResult with at most one location."""
    locations = []
    if lat is not None and lon is not None:
        locations.append(BusinessLocation(address="", latitude=lat, longitude=lon))
    return BusinessResult(
        id=business_id,
        name=name,
        username=name.lower().replace(" ", "_") if source == "local" else None,
        rating=rating,
        rating_count=rating_count,
        distance_meters=distance,
        source=source,
        locations=locations,
    )


# --- Faux collaborateurs ---

class FakeCatalogReader:
    """In-memory CatalogReader that returns its rows unfiltered."""

    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    async def fetch_businesses(self, criteria):
        self.calls.append(criteria)
        if self.error:
            raise self.error
        return copy.deepcopy(self.rows)


class FakePlacesClient:
    """PlacesClient returning canned results, optionally slow or failing."""

    def __init__(self, results=None, error=None, delay=0.0):
        self.results = results or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def search(self, query, latitude=None, longitude=None, radius_meters=None):
        self.calls.append((query, latitude, longitude, radius_meters))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.results)


class FakeCacheStore:
    """CacheStore with Redis sorted-set ordering (score, then member)."""

    def __init__(self):
        self.values = {}
        self.zsets = {}
        self.ttls = {}
        self.down = False

    def _check(self):
        if self.down:
            raise CacheUnavailable("Cache down")

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value, expire=300):
        self._check()
        self.values[key] = value
        self.ttls[key] = expire

    async def delete(self, key):
        self._check()
        removed = int(key in self.values) + int(key in self.zsets)
        self.values.pop(key, None)
        self.zsets.pop(key, None)
        return removed

    async def add_capped(self, key, member, score, capacity, ttl):
        self._check()
        zset = self.zsets.setdefault(key, {})
        zset[member] = score
        ordered = sorted(zset.items(), key=lambda item: (item[1], item[0]))
        for old_member, _ in ordered[:max(0, len(ordered) - capacity)]:
            del zset[old_member]
        self.ttls[key] = ttl

    async def members_newest_first(self, key):
        self._check()
        zset = self.zsets.get(key, {})
        return [m for m, _ in sorted(zset.items(), key=lambda item: (item[1], item[0]), reverse=True)]

    async def pop_all(self, key):
        self._check()
        return len(self.zsets.pop(key, {}))


class FakeHistoryStore:
    """HistoryStore kept in a list."""

    def __init__(self, error=None):
        self.entries = []
        self.error = error
        self._now = datetime(2025, 9, 1, tzinfo=timezone.utc)

    async def record(self, user_id, search_text):
        if self.error:
            raise self.error
        self._now += timedelta(seconds=1)
        self.entries.append(SearchHistoryEntry(
            id=str(len(self.entries) + 1), user_id=user_id, search_text=search_text, created_at=self._now,
        ))

    async def page(self, user_id, page, limit):
        if self.error:
            raise self.error
        mine = sorted(
            (e for e in self.entries if e.user_id == user_id),
            key=lambda e: e.created_at, reverse=True,
        )
        start = (page - 1) * limit
        return mine[start:start + limit], len(mine)


class ManualClock:
    """Horloge contrôlée pour les scores des recherches récentes."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds=1.0):
        self.now += seconds


# --- Fixtures ---

@pytest.fixture
def catalog_reader():
    return FakeCatalogReader()


@pytest.fixture
def places_client():
    return FakePlacesClient()


@pytest.fixture
def cache_store():
    return FakeCacheStore()


@pytest.fixture
def history_store():
    return FakeHistoryStore()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def search_cache(cache_store, clock):
    return SearchCache(cache_store, capacity=10, clock=clock)


@pytest.fixture
def search_service(catalog_reader, places_client, search_cache, history_store):
    """
    SearchService wired to in-memory fakes, with a short external timeout.
    """
    return SearchService(
        catalog=LocalCatalogSearch(catalog_reader),
        places=places_client,
        cache=search_cache,
        history=history_store,
        external_timeout=0.05,
    )


@pytest.fixture
def storage_error():
    return StorageUnavailable("Business catalog unavailable")
