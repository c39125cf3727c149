"""Main module for the FastAPI application."""
import json
from contextlib import asynccontextmanager

import asyncpg
import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from .cache import CacheManager, SearchCache
from .config import settings
from .db.catalog_reader import PostgresCatalogReader
from .db.history import SearchHistoryRepository
from .db.postgres_connector import PostgresConnector
from .exceptions import CacheUnavailable, SearchError
from .logger import logger
from .models import (
    ClearRecentSearchesResponse,
    RecentSearchesResponse,
    SearchHistoryPage,
    SearchResponse,
)
from .search.catalog import LocalCatalogSearch
from .search.places import GooglePlacesClient
from .search.search_service import SearchService

# --- Initialisation des dépendances globales ---

db_connector = PostgresConnector(settings.DATABASE_URL, max_size=settings.DATABASE_POOL_MAX_SIZE)
cache_manager = CacheManager()
http_client = httpx.AsyncClient()

search_service = SearchService(
    catalog=LocalCatalogSearch(PostgresCatalogReader(db_connector)),
    places=GooglePlacesClient(http_client),
    cache=SearchCache(cache_manager),
    history=SearchHistoryRepository(db_connector),
)
# Alias `service` patché par les tests
service = search_service


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Handle FastAPI startup and shutdown events."""
    logger.info("Starting up discovery API...")

    try:
        await db_connector.connect()
        logger.info("PostgreSQL connection pool established successfully.")
    except (asyncpg.PostgresError, ConnectionError, OSError) as e:
        logger.error("Failed to connect to PostgreSQL: {error}", error=e)

    try:
        await cache_manager.ping()
        logger.info("Redis cache connected successfully.")
    except CacheUnavailable as e:
        logger.error("Failed to connect to Redis: {error}", error=e)

    yield

    logger.info("Shutting down discovery API...")
    await search_service.drain()
    await http_client.aclose()
    await db_connector.close()
    logger.info("PostgreSQL connection pool closed.")
    await cache_manager.close()
    logger.info("Redis connection closed.")


app = FastAPI(
    title="Discovery - Hybrid Business Search",
    lifespan=lifespan,
)


@app.exception_handler(SearchError)
async def search_error_handler(_request: Request, exc: SearchError):
    """Renders typed search errors; retryable ones get a Retry-After header."""
    headers = {"Retry-After": "1"} if exc.retryable else None
    if exc.status_code >= 500:
        logger.error("{name}: {message}", name=type(exc).__name__, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": exc.status, "message": exc.message, "details": exc.details},
        headers=headers,
    )


def get_service() -> SearchService:
    """Dépendance FastAPI pour obtenir l'instance du service de recherche."""
    return service


def get_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """Caller id set by the authentication layer in front of this service."""
    if not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not authenticated")
    return x_user_id.strip()


@app.post("/search", response_model=SearchResponse)
async def search(
    request: Request,
    user_id: str = Depends(get_user_id),
    svc: SearchService = Depends(get_service),
):
    """
    POST /search endpoint.

    The body is parsed by the service itself so that malformed queries
    come back as a QueryValidationError (400) like every other search error.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")

    logger.info("Received request:\n{request_body}",
                request_body=json.dumps(body, indent=2, ensure_ascii=False))
    return await svc.search(user_id, body)


@app.get("/search/recent", response_model=RecentSearchesResponse)
async def recent_searches(
    user_id: str = Depends(get_user_id),
    svc: SearchService = Depends(get_service),
):
    """Recherches récentes de l'utilisateur (Redis)."""
    return await svc.recent_searches(user_id)


@app.delete("/search/recent", response_model=ClearRecentSearchesResponse)
async def clear_recent_searches(
    user_id: str = Depends(get_user_id),
    svc: SearchService = Depends(get_service),
):
    """Efface les recherches récentes de l'utilisateur."""
    return await svc.clear_recent_searches(user_id)


@app.get("/search/history", response_model=SearchHistoryPage)
async def search_history(
    page: int = Query(1),
    limit: int = Query(settings.DEFAULT_LIMIT),
    user_id: str = Depends(get_user_id),
    svc: SearchService = Depends(get_service),
):
    """Historique complet (PostgreSQL), paginé."""
    return await svc.search_history(user_id, page=page, limit=limit)


@app.get("/health", status_code=status.HTTP_200_OK, tags=["Monitoring"])
async def health_check():
    """
    Health check endpoint.

    Returns 200 when Postgres and Redis answer, 503 with per-service status otherwise.
    """
    services_status = {"database": "ok", "redis": "ok"}
    try:
        await cache_manager.ping()
    except CacheUnavailable:
        services_status["redis"] = "error"
        logger.error("Health check failed: Redis connection error.")

    try:
        await db_connector.execute_query("SELECT 1")
    except (asyncpg.PostgresError, asyncpg.InterfaceError, ConnectionError, OSError):
        services_status["database"] = "error"
        logger.error("Health check failed: Database connection error.")

    if "error" in services_status.values():
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=services_status)

    return services_status
