import json
from datetime import datetime, timezone

import asyncpg
import pytest

from discovery.db.catalog_reader import PostgresCatalogReader, like_pattern
from discovery.db.history import SearchHistoryRepository, user_uuid
from discovery.db.postgres_connector import PostgresConnector
from discovery.exceptions import StorageUnavailable
from discovery.search.interfaces import CatalogCriteria


class FakeConnector:
    """Remplace PostgresConnector : enregistre les requêtes, renvoie des lignes prêtes."""

    def __init__(self, rows=None, value=None, error=None):
        self.rows = rows or []
        self.value = value
        self.error = error
        self.queries = []

    async def execute_query(self, sql, *args):
        self.queries.append((sql, args))
        if self.error:
            raise self.error
        return [dict(row) for row in self.rows]

    async def fetch_value(self, sql, *args):
        self.queries.append((sql, args))
        return self.value

    async def execute(self, sql, *args):
        self.queries.append((sql, args))
        if self.error:
            raise self.error
        return "INSERT 0 1"


@pytest.mark.parametrize("text, expected", [
    ("pizza", "%pizza%"),
    ("100%", "%100\\%%"),
    ("a_b", "%a\\_b%"),
    ("c:\\x", "%c:\\\\x%"),
])
def test_like_pattern_escapes_wildcards(text, expected):
    assert like_pattern(text) == expected


class TestCatalogReader:
    @pytest.mark.asyncio
    async def test_parameters_and_json_columns(self):
        row = {
            "id": "u1", "name": "Tony's Pizza", "rating_sum": 94, "review_count": 20,
            "categories": json.dumps([{"id": "food", "name": "Food"}]),
            "locations": json.dumps([{"id": "l1", "latitude": 40.7, "longitude": -74.0}]),
        }
        db = FakeConnector(rows=[row])
        criteria = CatalogCriteria(
            text="pizza", category_ids=("food",), min_rating=4.0,
            bbox=(40.0, 41.0, -75.0, -73.0), limit=50,
        )

        rows = await PostgresCatalogReader(db).fetch_businesses(criteria)

        _, args = db.queries[0]
        assert args == ("%pizza%", ["food"], 4.0, 40.0, 41.0, -75.0, -73.0, 50)
        assert rows[0]["categories"] == [{"id": "food", "name": "Food"}]
        assert rows[0]["locations"][0]["latitude"] == 40.7

    @pytest.mark.asyncio
    async def test_optional_filters_are_null(self):
        db = FakeConnector()
        await PostgresCatalogReader(db).fetch_businesses(CatalogCriteria(text="pizza"))
        _, args = db.queries[0]
        assert args == ("%pizza%", None, None, None, None, None, None, 200)

    @pytest.mark.asyncio
    async def test_database_error_is_storage_unavailable(self):
        db = FakeConnector(error=asyncpg.PostgresError("relation does not exist"))
        with pytest.raises(StorageUnavailable):
            await PostgresCatalogReader(db).fetch_businesses(CatalogCriteria(text="pizza"))

    @pytest.mark.asyncio
    async def test_pool_not_connected(self):
        reader = PostgresCatalogReader(PostgresConnector("postgresql://nowhere/db"))
        with pytest.raises(StorageUnavailable):
            await reader.fetch_businesses(CatalogCriteria(text="pizza"))


USER_ID = "0b7e9c2a-4d51-4f1e-9a39-6c1f2d8e5a10"


class TestHistoryRepository:
    @pytest.mark.asyncio
    async def test_record_inserts_active_row(self):
        db = FakeConnector()
        await SearchHistoryRepository(db).record(USER_ID, "pizza")

        sql, args = db.queries[0]
        assert '"RecentSearch"' in sql
        assert "'ACTIVE'" in sql
        assert args[1:] == (USER_ID, "pizza")

    @pytest.mark.asyncio
    async def test_page(self):
        created = datetime(2025, 9, 1, tzinfo=timezone.utc)
        rows = [{"id": "h1", "user_id": USER_ID, "search_text": "pizza", "status": "ACTIVE", "created_at": created}]
        db = FakeConnector(rows=rows, value=7)

        entries, total = await SearchHistoryRepository(db).page(USER_ID.upper(), page=2, limit=5)

        assert total == 7
        assert entries[0].search_text == "pizza"
        assert db.queries[0][1] == (USER_ID, 5, 5)

    @pytest.mark.asyncio
    async def test_record_failure(self):
        db = FakeConnector(error=ConnectionError("Connection pool not initialized"))
        with pytest.raises(StorageUnavailable):
            await SearchHistoryRepository(db).record(USER_ID, "pizza")

    @pytest.mark.asyncio
    async def test_non_uuid_caller_is_not_recorded(self):
        db = FakeConnector()
        await SearchHistoryRepository(db).record("not-a-uuid", "pizza")
        assert db.queries == []

    @pytest.mark.asyncio
    async def test_non_uuid_caller_has_empty_history(self):
        db = FakeConnector(error=asyncpg.DataError("invalid input for query argument $1"))
        entries, total = await SearchHistoryRepository(db).page("not-a-uuid", page=1, limit=20)
        assert (entries, total) == ([], 0)
        assert db.queries == []


@pytest.mark.parametrize("raw, expected", [
    (USER_ID, USER_ID),
    (USER_ID.upper(), USER_ID),
    ("user-1", None),
    ("", None),
])
def test_user_uuid(raw, expected):
    assert user_uuid(raw) == expected
