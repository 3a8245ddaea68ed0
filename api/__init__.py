"""REST API module for the listings service.

This module provides HTTP endpoints for:
- The unfiltered listings feed, served from the snapshot cache
- Trait-filtered listing search with anchor pagination
- Trait-filtered token catalog search
- Health checks
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import asyncpg
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from catalog import resolve_sentinel
from config import load_settings
from database import create_pool, close_pool
from listings import (
    ListingError, ListingSearch, ListingsCache, TraitEnricher, VersionStore,
)
from monitor import ListingSyncMonitor
from .deps import Services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def build_services(pool, settings: Dict[str, Any]) -> Services:
    """Wire the query engine, enricher and cache to a pool."""
    sentinel_value_id = await resolve_sentinel(pool, settings)
    return Services(
        settings=settings,
        search=ListingSearch(pool, sentinel_value_id),
        enricher=TraitEnricher(pool, sentinel_value_id),
        cache=ListingsCache(VersionStore(pool)),
        sentinel_value_id=sentinel_value_id,
    )


# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    pool = None
    monitor = None
    stop_event = asyncio.Event()
    tasks = []

    if app.state.services is None:
        settings = load_settings()
        pool = await create_pool(settings['db_url'])
        app.state.services = await build_services(pool, settings)
    services = app.state.services
    settings = services.settings

    tasks.append(asyncio.create_task(
        services.cache.run(settings['refresh_interval'], stop_event),
        name="cache-refresh"
    ))
    if settings['run_sync_in_api'] and pool is not None:
        monitor = ListingSyncMonitor.from_settings(pool, settings)
        tasks.append(asyncio.create_task(monitor.start(), name="sync"))
        logger.info("Started listing sync in the API process")

    yield

    logger.info("Shutting down API...")
    stop_event.set()
    if monitor:
        monitor.stop()
    await asyncio.gather(*tasks, return_exceptions=True)
    if monitor:
        monitor.close()
    if pool is not None:
        await close_pool(pool)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built services. When omitted, the lifespan handler
                  loads settings and opens the database pool.
    """
    app = FastAPI(
        title="Drifellascape API",
        description="Versioned marketplace listings with trait search",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.services = services

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type"],
    )

    @app.exception_handler(ListingError)
    async def listing_error_handler(request: Request, exc: ListingError):
        logger.error(f"Listing error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(asyncpg.PostgresError)
    async def database_error_handler(request: Request, exc: asyncpg.PostgresError):
        logger.error(f"Database error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Database error"})

    @app.get("/health")
    async def health(request: Request):
        """Liveness check reporting the cached version."""
        services = request.app.state.services
        version_id = services.cache.version_id if services is not None else None
        return {"status": "ok", "versionId": version_id}

    # Import and include all routers
    from .listings import router as listings_router
    from .tokens import router as tokens_router

    app.include_router(listings_router)
    app.include_router(tokens_router)

    return app


app = create_app()
