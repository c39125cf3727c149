"""PostgreSQL database connector."""
from typing import Any, Dict, List, Optional

import asyncpg

from discovery.logger import logger


class PostgresConnector:
    """Gère un pool de connexions asynchrone à PostgreSQL à partir d'une URL."""

    def __init__(self, database_url: str, max_size: int = 10):
        self.database_url = database_url
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Initialise le pool de connexions."""
        self._pool = await asyncpg.create_pool(
            dsn=self.database_url,
            max_size=self.max_size,
        )
        logger.info("asyncpg pool ready (max_size={size})", size=self.max_size)

    def _require_pool(self) -> asyncpg.Pool:
        if not self._pool:
            raise ConnectionError("Connection pool not initialized. Call .connect() first.")
        return self._pool

    async def execute_query(self, sql: str, *args) -> List[Dict[str, Any]]:
        """Exécute une requête SQL et retourne les lignes sous forme de dicts."""
        async with self._require_pool().acquire() as conn:
            rows = await conn.fetch(sql, *args)
            return [dict(row) for row in rows]

    async def fetch_value(self, sql: str, *args) -> Any:
        """Exécute une requête et retourne la première colonne de la première ligne."""
        async with self._require_pool().acquire() as conn:
            return await conn.fetchval(sql, *args)

    async def execute(self, sql: str, *args) -> str:
        """Exécute une commande (INSERT/UPDATE) et retourne son statut."""
        async with self._require_pool().acquire() as conn:
            return await conn.execute(sql, *args)

    async def close(self):
        """Ferme le pool de connexions proprement."""
        if self._pool:
            await self._pool.close()
            self._pool = None
