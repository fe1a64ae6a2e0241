"""Health check endpoint."""

from fastapi import APIRouter, Depends

from voicedesc.api.deps import get_orchestrator
from voicedesc.api.schemas import HealthResponse
from voicedesc.orchestrator.unified import UnifiedOrchestrator

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: UnifiedOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    """Return job health derived from the orchestrator's job counts."""
    from voicedesc import __version__

    summary = orchestrator.health()
    return HealthResponse(
        status=summary.status,
        version=__version__,
        active_jobs=summary.active_jobs,
        completed_jobs=summary.completed_jobs,
        failed_jobs=summary.failed_jobs,
    )
