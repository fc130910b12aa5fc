"""
FastAPI router module for sync control and cache inspection.

Sync endpoints:
- GET /sync/status: current SyncStatus
- POST /sync/run: run a sync now (optionally for a given source id)
- POST /sync/upload: load a CSV into the in-memory source and sync it
- POST /sync/auto: start auto-sync or change its interval
- DELETE /sync/auto: stop auto-sync

Cache endpoints:
- GET /cache/stats: TieredCache statistics

A sync requested while another is running is answered with 409; any other
failed run is returned as a SyncResult with success=false.
"""

import logging
from typing import Optional

from fastapi import APIRouter, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from callpulse.core.dependencies import OrchestratorDep, PipelineDep
from callpulse.models import CacheStats, SyncResult, SyncStatus
from callpulse.services.ingestion import parse_csv
from callpulse.services.sources import StaticRowSource
from callpulse.services.sync import ALREADY_RUNNING

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])
cache_router = APIRouter(prefix="/cache", tags=["cache"])

UPLOAD_SOURCE_ID = 'upload'


class SyncRunRequest(BaseModel):
    source_id: Optional[str] = Field(default=None, description="Upstream source; configured default when omitted")


class AutoSyncRequest(BaseModel):
    interval_minutes: Optional[float] = Field(default=None, gt=0, description="Minutes between runs")


def _raise_if_busy(result: SyncResult) -> SyncResult:
    if not result.success and result.errors == [ALREADY_RUNNING]:
        raise HTTPException(status_code=409, detail=ALREADY_RUNNING)
    return result


# =============================================================================
# Sync Endpoints
# =============================================================================


@router.get("/status", response_model=SyncStatus)
async def get_sync_status(orchestrator: OrchestratorDep) -> SyncStatus:
    return orchestrator.get_status()


@router.post("/run", response_model=SyncResult)
async def run_sync(orchestrator: OrchestratorDep, payload: Optional[SyncRunRequest] = None) -> SyncResult:
    """Run one sync and wait for it to finish."""
    source_id = payload.source_id if payload is not None else None
    return _raise_if_busy(await orchestrator.sync_now(source_id))


@router.post("/upload", response_model=SyncResult)
async def upload_and_sync(orchestrator: OrchestratorDep, file: UploadFile = File(...)) -> SyncResult:
    """
    Replace the in-memory upload source with a CSV export and sync it.

    Raises:
        HTTPException 400: If the CSV cannot be parsed, or the application
            syncs from a remote source instead of the in-memory one.
    """
    if not isinstance(orchestrator.source, StaticRowSource):
        raise HTTPException(status_code=400, detail="Uploads are only accepted when no remote source is configured")

    grid, issues = parse_csv(await file.read())
    if issues:
        raise HTTPException(
            status_code=400,
            detail=[issue.model_dump(exclude_none=True) for issue in issues],
        )

    orchestrator.source.put(UPLOAD_SOURCE_ID, grid, name=file.filename or UPLOAD_SOURCE_ID)
    logger.info(f"Loaded upload '{file.filename}' with {len(grid) - 1} rows")
    return _raise_if_busy(await orchestrator.sync_now(UPLOAD_SOURCE_ID))


@router.post("/auto", response_model=SyncStatus)
async def start_auto_sync(orchestrator: OrchestratorDep, payload: Optional[AutoSyncRequest] = None) -> SyncStatus:
    """Start auto-sync; when it is already running, apply the new interval."""
    interval = payload.interval_minutes if payload is not None else None
    if orchestrator.auto_sync_active and interval is not None:
        orchestrator.update_interval(interval)
    else:
        orchestrator.start_auto_sync(interval)
    return orchestrator.get_status()


@router.delete("/auto", response_model=SyncStatus)
async def stop_auto_sync(orchestrator: OrchestratorDep) -> SyncStatus:
    orchestrator.stop_auto_sync()
    return orchestrator.get_status()


# =============================================================================
# Cache Endpoints
# =============================================================================


@cache_router.get("/stats", response_model=CacheStats)
async def get_cache_stats(pipeline: PipelineDep) -> CacheStats:
    return pipeline.cache.stats()
