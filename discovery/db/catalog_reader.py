"""Lecture du catalogue de commerces dans PostgreSQL."""
import json
from typing import Any, Dict, List

import asyncpg

from discovery.db.postgres_connector import PostgresConnector
from discovery.exceptions import StorageUnavailable
from discovery.logger import logger
from discovery.search.interfaces import CatalogCriteria

# Seuls les comptes BUSINESS actifs sont recherchables.
# $1 motif ILIKE, $2 catégories, $3 note minimale, $4..$7 boîte englobante, $8 limite
SEARCH_BUSINESSES_SQL = """
SELECT
    u.id::text AS id,
    u.username,
    u.name,
    u.logo_url,
    u.about,
    u.rating_sum,
    u.review_count,
    COALESCE((
        SELECT json_agg(json_build_object('id', c.id::text, 'name', c.name) ORDER BY c.name)
        FROM "UserCategory" uc
        JOIN "Category" c ON c.id = uc."categoryId"
        WHERE uc."userId" = u.id
    ), '[]'::json) AS categories,
    COALESCE((
        SELECT json_agg(json_build_object(
            'id', l.id::text,
            'address', COALESCE(l.address, ''),
            'latitude', l.latitude,
            'longitude', l.longitude,
            'city', l.city,
            'state', l.state,
            'country', l.country
        ) ORDER BY l."updatedAt" DESC)
        FROM "Location" l
        WHERE l."userId" = u.id
    ), '[]'::json) AS locations
FROM "User" u
WHERE u.user_type = 'BUSINESS'
  AND u.status = 'ACTIVE'
  AND (u.name ILIKE $1 OR u.username ILIKE $1 OR u.about ILIKE $1)
  AND ($2::text[] IS NULL OR EXISTS (
        SELECT 1 FROM "UserCategory" uc
        WHERE uc."userId" = u.id AND uc."categoryId"::text = ANY($2::text[])
  ))
  AND ($3::float8 IS NULL OR (
        u.review_count > 0 AND u.rating_sum::float8 / u.review_count >= $3::float8
  ))
  AND ($4::float8 IS NULL OR EXISTS (
        SELECT 1 FROM "Location" l
        WHERE l."userId" = u.id
          AND l.latitude BETWEEN $4::float8 AND $5::float8
          AND l.longitude BETWEEN $6::float8 AND $7::float8
  ))
ORDER BY u.review_count DESC, u.rating_sum DESC, u.name ASC
LIMIT $8
"""


def like_pattern(text: str) -> str:
    """Motif ILIKE « contient », avec échappement de %, _ et \\."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _decode_json(value: Any) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


class PostgresCatalogReader:  # pylint: disable=too-few-public-methods
    """CatalogReader backed by the relational store. Never writes."""

    def __init__(self, db_connector: PostgresConnector):
        self.db = db_connector

    async def fetch_businesses(self, criteria: CatalogCriteria) -> List[Dict[str, Any]]:
        """Exécute la requête de recherche et retourne les lignes brutes."""
        bbox = criteria.bbox or (None, None, None, None)
        try:
            rows = await self.db.execute_query(
                SEARCH_BUSINESSES_SQL,
                like_pattern(criteria.text),
                list(criteria.category_ids) or None,
                criteria.min_rating,
                *bbox,
                criteria.limit,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, ConnectionError, OSError) as e:
            logger.error("Catalog query failed: {error}", error=e)
            raise StorageUnavailable("Business catalog unavailable", details={"error": str(e)}) from e

        for row in rows:
            row["categories"] = _decode_json(row.get("categories"))
            row["locations"] = _decode_json(row.get("locations"))
        return rows
