"""
FastAPI dependency injection module for the CallPulse backend.

Endpoint handlers never reach for module-level singletons; they receive the
Pipeline and SyncOrchestrator created in the application lifespan (stored on
app.state) through these dependencies. Tests swap them with
app.dependency_overrides or by assigning app.state directly.

Dependencies Provided:
- get_pipeline / PipelineDep: the application's Pipeline
- get_orchestrator / OrchestratorDep: the SyncOrchestrator (503 when no
  upstream source is configured)

Usage:
    @router.get("/general")
    async def general(pipeline: PipelineDep) -> GeneralMetrics:
        ...
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from callpulse.services.pipeline import Pipeline
from callpulse.services.sync import SyncOrchestrator


# =============================================================================
# Pipeline Dependencies
# =============================================================================

def get_pipeline(request: Request) -> Pipeline:
    """
    Return the Pipeline built during application startup.

    Raises:
        HTTPException 503: If the application has not finished starting.
    """
    pipeline = getattr(request.app.state, 'pipeline', None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline is not initialized")
    return pipeline


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """
    Return the SyncOrchestrator.

    Raises:
        HTTPException 503: If no upstream source is configured.
    """
    orchestrator = getattr(request.app.state, 'orchestrator', None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="No upstream source is configured")
    return orchestrator


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

PipelineDep = Annotated[Pipeline, Depends(get_pipeline)]

OrchestratorDep = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
