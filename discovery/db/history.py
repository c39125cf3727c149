"""Durable search history ("RecentSearch" table)."""
import uuid
from typing import List, Optional, Tuple

import asyncpg

from discovery.db.postgres_connector import PostgresConnector
from discovery.exceptions import StorageUnavailable
from discovery.logger import logger
from discovery.models import SearchHistoryEntry

INSERT_SEARCH_SQL = """
INSERT INTO "RecentSearch" (id, "userId", status, "searchText")
VALUES ($1::uuid, $2::uuid, 'ACTIVE', $3)
"""

PAGE_SEARCHES_SQL = """
SELECT id::text AS id, "userId"::text AS user_id, "searchText" AS search_text,
       status::text AS status, "createdAt" AS created_at
FROM "RecentSearch"
WHERE "userId" = $1::uuid
ORDER BY "createdAt" DESC
OFFSET $2 LIMIT $3
"""

COUNT_SEARCHES_SQL = """
SELECT COUNT(*) FROM "RecentSearch" WHERE "userId" = $1::uuid
"""

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, ConnectionError, OSError)


def user_uuid(user_id: str) -> Optional[str]:
    """Canonical UUID text of a caller id, None when it is not a UUID."""
    try:
        return str(uuid.UUID(str(user_id)))
    except ValueError:
        return None


class SearchHistoryRepository:
    """HistoryStore backed by PostgreSQL. Rows are written once, never updated."""

    def __init__(self, db_connector: PostgresConnector):
        self.db = db_connector

    async def record(self, user_id: str, search_text: str) -> None:
        """Enregistre une recherche ; ignorée si l'identifiant n'est pas un UUID."""
        user_key = user_uuid(user_id)
        if user_key is None:
            logger.warning("Search history not recorded: user id {user_id} is not a UUID", user_id=user_id)
            return
        try:
            await self.db.execute(INSERT_SEARCH_SQL, str(uuid.uuid4()), user_key, search_text)
        except _DB_ERRORS as e:
            raise StorageUnavailable("Search history unavailable", details={"error": str(e)}) from e

    async def page(
        self, user_id: str, page: int, limit: int
    ) -> Tuple[List[SearchHistoryEntry], int]:
        """
        Returns (entries newest first, total) for one page.

        A caller id that is not a UUID cannot own history rows: empty page.
        """
        user_key = user_uuid(user_id)
        if user_key is None:
            return [], 0
        try:
            rows = await self.db.execute_query(PAGE_SEARCHES_SQL, user_key, (page - 1) * limit, limit)
            total = await self.db.fetch_value(COUNT_SEARCHES_SQL, user_key)
        except _DB_ERRORS as e:
            logger.error("History query failed for user {user_id}: {error}", user_id=user_id, error=e)
            raise StorageUnavailable("Search history unavailable", details={"error": str(e)}) from e

        return [SearchHistoryEntry(**row) for row in rows], int(total or 0)
