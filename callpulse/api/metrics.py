"""
FastAPI router module for KPI endpoints.

Serves the outputs the last successful sync published into the cache. When a
time window is requested the KPIs are recomputed from the cached CallRecords
for that window instead.

Key Endpoints:
- GET /metrics/operators: ranked operator metrics (optional start/end)
- GET /metrics/operators/export: ranked operator metrics as a CSV download
- GET /metrics/operators/{name}: one operator
- GET /metrics/general: aggregate metrics (optional start/end)
- GET /metrics/queues: per-queue metrics (optional start/end)
- GET /metrics/queues/export: per-queue metrics as a CSV download
- GET /metrics/recommendations: operational recommendations
- GET /metrics/comparison: current vs previous window
- GET /metrics/config, PUT /metrics/config: runtime metric configuration

Errors:
- 404 when nothing has been synced yet
- 400 for invalid windows or config values
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel, Field, ValidationError

from callpulse.core.dependencies import PipelineDep
from callpulse.models import (
    CallRecord,
    GeneralMetrics,
    MetricsConfig,
    OperatorMetrics,
    PeriodComparison,
    QueueMetrics,
)
from callpulse.services.export import export_filename, operators_to_csv, queues_to_csv
from callpulse.services.metrics import filter_window
from callpulse.services.pipeline import (
    CACHE_KEY_GENERAL_METRICS,
    CACHE_KEY_OPERATOR_METRICS,
    CACHE_KEY_QUEUE_METRICS,
    CACHE_KEY_RECORDS,
    Pipeline,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/metrics", tags=["metrics"])

NOT_SYNCED = "No metrics available yet; run a sync first"


class MetricsConfigUpdate(BaseModel):
    """Partial MetricsConfig update; omitted fields keep their value."""
    service_level_target_seconds: Optional[int] = Field(default=None, ge=0)
    working_hours: Optional[float] = Field(default=None, ge=0)
    break_hours: Optional[float] = Field(default=None, ge=0)


# =============================================================================
# Helper Functions
# =============================================================================


def _windowed(start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and end is not None and start >= end:
        raise HTTPException(status_code=400, detail="start must be before end")
    return start is not None or end is not None


def _cached_records(pipeline: Pipeline, start: Optional[datetime], end: Optional[datetime]) -> List[CallRecord]:
    records = pipeline.read_cached(CACHE_KEY_RECORDS)
    if records is None:
        raise HTTPException(status_code=404, detail=NOT_SYNCED)
    return filter_window(records, start, end)


def _cached_or_404(pipeline: Pipeline, key: str):
    value = pipeline.read_cached(key)
    if value is None:
        raise HTTPException(status_code=404, detail=NOT_SYNCED)
    return value


def _operator_metrics(pipeline: Pipeline, start: Optional[datetime], end: Optional[datetime]) -> List[OperatorMetrics]:
    if _windowed(start, end):
        return pipeline.engine.rank_operators(_cached_records(pipeline, start, end))
    return _cached_or_404(pipeline, CACHE_KEY_OPERATOR_METRICS)


def _queue_metrics(pipeline: Pipeline, start: Optional[datetime], end: Optional[datetime]) -> List[QueueMetrics]:
    if _windowed(start, end):
        return pipeline.engine.compute_queue_metrics(_cached_records(pipeline, start, end))
    return _cached_or_404(pipeline, CACHE_KEY_QUEUE_METRICS)


def _csv_download(content: str, title: str) -> Response:
    return Response(
        content=content.encode('utf-8'),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(title)}"'},
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/operators", response_model=List[OperatorMetrics])
async def list_operator_metrics(
    pipeline: PipelineDep,
    start: Optional[datetime] = Query(default=None, description="Window start (inclusive)"),
    end: Optional[datetime] = Query(default=None, description="Window end (exclusive)"),
) -> List[OperatorMetrics]:
    """Ranked operator metrics, best score first."""
    return _operator_metrics(pipeline, start, end)


@router.get("/operators/export", response_class=Response)
async def export_operator_metrics(
    pipeline: PipelineDep,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
) -> Response:
    """Ranked operator metrics as CSV, in ranking order."""
    operators = _operator_metrics(pipeline, start, end)
    logger.info(f"Exporting {len(operators)} operator rows")
    return _csv_download(operators_to_csv(operators), "operator_metrics")


@router.get("/operators/{name}", response_model=OperatorMetrics)
async def get_operator_metrics(name: str, pipeline: PipelineDep) -> OperatorMetrics:
    """
    Metrics for a single operator, matched case-insensitively.

    Raises:
        HTTPException 404: If the operator is unknown or nothing was synced.
    """
    operators: List[OperatorMetrics] = _cached_or_404(pipeline, CACHE_KEY_OPERATOR_METRICS)
    wanted = name.strip().lower()
    for metrics in operators:
        if metrics.operator.lower() == wanted:
            return metrics
    raise HTTPException(status_code=404, detail=f"Operator '{name}' not found")


@router.get("/general", response_model=GeneralMetrics)
async def get_general_metrics(
    pipeline: PipelineDep,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
) -> GeneralMetrics:
    if _windowed(start, end):
        return pipeline.engine.compute_aggregate(_cached_records(pipeline, start, end))
    return _cached_or_404(pipeline, CACHE_KEY_GENERAL_METRICS)


@router.get("/queues", response_model=List[QueueMetrics])
async def list_queue_metrics(
    pipeline: PipelineDep,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
) -> List[QueueMetrics]:
    return _queue_metrics(pipeline, start, end)


@router.get("/queues/export", response_class=Response)
async def export_queue_metrics(
    pipeline: PipelineDep,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
) -> Response:
    queues = _queue_metrics(pipeline, start, end)
    logger.info(f"Exporting {len(queues)} queue rows")
    return _csv_download(queues_to_csv(queues), "queue_metrics")


@router.get("/recommendations", response_model=List[str])
async def list_recommendations(pipeline: PipelineDep) -> List[str]:
    general: GeneralMetrics = _cached_or_404(pipeline, CACHE_KEY_GENERAL_METRICS)
    return pipeline.engine.build_recommendations(general)


@router.get("/comparison", response_model=PeriodComparison)
async def compare_periods(
    pipeline: PipelineDep,
    current_start: datetime = Query(...),
    current_end: datetime = Query(...),
    previous_start: datetime = Query(...),
    previous_end: datetime = Query(...),
) -> PeriodComparison:
    """Compare two windows of the cached records."""
    _windowed(current_start, current_end)
    _windowed(previous_start, previous_end)
    current = _cached_records(pipeline, current_start, current_end)
    previous = _cached_records(pipeline, previous_start, previous_end)
    return pipeline.engine.compare_periods(current, previous)


@router.get("/config", response_model=MetricsConfig)
async def get_metrics_config(pipeline: PipelineDep) -> MetricsConfig:
    return pipeline.engine.config


@router.put("/config", response_model=MetricsConfig)
async def update_metrics_config(update: MetricsConfigUpdate, pipeline: PipelineDep) -> MetricsConfig:
    """
    Update the metric configuration for all subsequent computations.

    Cached KPIs are not recomputed; the next sync or windowed request uses
    the new values.
    """
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No configuration changes provided")
    try:
        return pipeline.engine.update_config(**changes)
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
