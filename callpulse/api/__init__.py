"""
CallPulse API package initialization.

FastAPI router modules:
- metrics: operator, queue and aggregate KPIs plus metric configuration
- quality: data quality report, CSV audits and known values
- sync: sync control; cache statistics
"""

from fastapi import APIRouter

# Import router modules
from callpulse.api.metrics import router as metrics_router
from callpulse.api.quality import router as quality_router
from callpulse.api.sync import router as sync_router, cache_router

# Create main API router
api_router = APIRouter()

# Every sub-router carries its own prefix
api_router.include_router(metrics_router)
api_router.include_router(quality_router)
api_router.include_router(sync_router)
api_router.include_router(cache_router)

__all__ = [
    "api_router",
    "metrics_router",
    "quality_router",
    "sync_router",
    "cache_router",
]
