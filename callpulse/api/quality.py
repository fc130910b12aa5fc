"""
FastAPI router module for data quality endpoints.

- GET /quality/report: QualityReport from the last successful sync
- POST /quality/audit: audit an uploaded CSV export without touching the cache
- GET /quality/known-values: operators, status spellings and queues in use
- POST /quality/known-values: register reviewer-confirmed values

Known values feed later normalization, audits and syncs; reports already
cached are not recomputed.
"""

import logging
from typing import Dict, List

from fastapi import APIRouter, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from callpulse.core.dependencies import PipelineDep
from callpulse.models import QualityReport
from callpulse.services.ingestion import parse_csv
from callpulse.services.pipeline import CACHE_KEY_QUALITY_REPORT, Pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quality", tags=["quality"])


class KnownValuesUpdate(BaseModel):
    operators: List[str] = Field(default_factory=list, description="Canonical operator names")
    statuses: Dict[str, str] = Field(default_factory=dict, description="Spelling -> call status")
    queues: List[str] = Field(default_factory=list, description="Canonical queue names")


class KnownValues(BaseModel):
    operators: List[str]
    statuses: Dict[str, str]
    queues: List[str]


def _known_values(pipeline: Pipeline) -> KnownValues:
    rules = pipeline.normalizer.rules
    return KnownValues(
        operators=sorted(pipeline.normalizer.known_operators),
        statuses={alias: status.value for alias, status in sorted(rules.status_mappings.items())},
        queues=sorted(rules.canonical_queues),
    )


@router.get("/report", response_model=QualityReport)
async def get_quality_report(pipeline: PipelineDep) -> QualityReport:
    report = pipeline.read_cached(CACHE_KEY_QUALITY_REPORT)
    if report is None:
        raise HTTPException(status_code=404, detail="No quality report available yet; run a sync first")
    return report


@router.post("/audit", response_model=QualityReport)
async def audit_upload(pipeline: PipelineDep, file: UploadFile = File(...)) -> QualityReport:
    """
    Audit a CSV call export.

    Raises:
        HTTPException 400: If the file cannot be parsed or has no data rows.
    """
    content = await file.read()
    grid, issues = parse_csv(content)
    if issues:
        raise HTTPException(
            status_code=400,
            detail=[issue.model_dump(exclude_none=True) for issue in issues],
        )

    report = pipeline.auditor.audit_grid(grid)
    logger.info(
        f"Audited upload '{file.filename}': {report.total_records} rows, "
        f"score {report.quality_score:.1f}"
    )
    return report


@router.get("/known-values", response_model=KnownValues)
async def get_known_values(pipeline: PipelineDep) -> KnownValues:
    return _known_values(pipeline)


@router.post("/known-values", response_model=KnownValues)
async def register_known_values(update: KnownValuesUpdate, pipeline: PipelineDep) -> KnownValues:
    """
    Register known operators, status spellings and queues.

    Raises:
        HTTPException 400: If a status spelling maps to an unknown status.
    """
    try:
        pipeline.normalizer.register_known_values(
            operators=update.operators,
            statuses=update.statuses,
            queues=update.queues,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _known_values(pipeline)
