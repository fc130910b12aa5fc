"""
FastAPI application entry point for the CallPulse API.

Configures logging, CORS and the API routers, and owns the lifecycle of the
long-lived objects stored on app.state:

- pipeline: Pipeline (normalizer, builder, metrics, auditor, cache)
- orchestrator: SyncOrchestrator over Google Sheets when credentials are
  configured, otherwise over an in-memory source fed by CSV uploads
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from callpulse import __version__
from callpulse.api import api_router
from callpulse.core.config import Settings, get_settings
from callpulse.core.database import close_db, ensure_cache_table, init_db
from callpulse.core.storage import CacheStore, MemoryCacheStore, PostgresCacheStore
from callpulse.services.pipeline import Pipeline
from callpulse.services.sources import GoogleSheetsSource, RowSource, StaticRowSource
from callpulse.services.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


async def _open_store(settings: Settings) -> CacheStore:
    """Durable cache store: Postgres when configured and reachable, else memory."""
    if not settings.database_url:
        return MemoryCacheStore()
    try:
        pool = await init_db(settings.database_url)
        await ensure_cache_table(pool, settings.cache_table)
        logger.info("Database connection pool initialized")
        return PostgresCacheStore(pool, settings.cache_table)
    except Exception as e:
        logger.error(f"Failed to initialize database, cache will not survive restarts: {e}")
        return MemoryCacheStore()


def _build_source(settings: Settings) -> RowSource:
    if settings.google_application_credentials:
        logger.info("Using Google Sheets as the upstream source")
        return GoogleSheetsSource(settings)
    logger.info("No Google credentials configured; syncing from uploaded CSV files")
    return StaticRowSource()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for application startup and shutdown.

    On startup:
        - Open the durable cache store and rehydrate the cache
        - Build the Pipeline and SyncOrchestrator
        - Start auto-sync when enabled

    On shutdown:
        - Stop auto-sync and flush pending cache writes
        - Close the database pool
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("CallPulse API starting")

    store = await _open_store(settings)
    pipeline = Pipeline.from_settings(settings, store)
    restored = await pipeline.cache.rehydrate()
    logger.info(f"Restored {restored} cache entries")

    orchestrator = SyncOrchestrator.from_settings(pipeline, _build_source(settings), settings)
    if settings.auto_sync_enabled:
        orchestrator.start_auto_sync()

    app.state.pipeline = pipeline
    app.state.orchestrator = orchestrator

    yield

    logger.info("CallPulse API shutting down")
    orchestrator.stop_auto_sync()
    await pipeline.cache.flush()
    if settings.database_url:
        await close_db()
        logger.info("Database connection pool closed")


# Create FastAPI application
app = FastAPI(
    title="CallPulse API",
    version=__version__,
    description=(
        "Call-center analytics: operator and queue KPIs, data quality audits, "
        "and synchronization from spreadsheet exports."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer health checks.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "CallPulse API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "callpulse.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
