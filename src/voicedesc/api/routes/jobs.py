"""Job status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from voicedesc.api.deps import get_orchestrator
from voicedesc.api.schemas import (
    CleanupRequest,
    CleanupResponse,
    JobDetailResponse,
    JobErrorResponse,
    JobListItem,
    JobStatusResponse,
)
from voicedesc.jobs.models import Job, JobStatus
from voicedesc.orchestrator.unified import UnifiedOrchestrator

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


def _require_job(orchestrator: UnifiedOrchestrator, job_id: str) -> Job:
    job = orchestrator.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _status_fields(job_id: str, status: JobStatus) -> dict:
    return {
        "job_id": job_id,
        "status": status.state.value,
        "step": status.step.value,
        "progress": status.progress,
        "message": status.message,
        "error": JobErrorResponse(**status.error.to_dict()) if status.error else None,
        "updated_at": status.updated_at,
    }


@router.get("", response_model=list[JobListItem])
async def list_jobs(
    orchestrator: UnifiedOrchestrator = Depends(get_orchestrator),
) -> list[JobListItem]:
    return [
        JobListItem(
            job_id=j.id,
            kind=j.kind.value,
            pipeline=j.pipeline.value if j.pipeline else None,
            status=j.status.state.value,
            created_at=j.created_at,
        )
        for j in orchestrator.list_jobs()
    ]


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_jobs(
    req: CleanupRequest | None = None,
    orchestrator: UnifiedOrchestrator = Depends(get_orchestrator),
) -> CleanupResponse:
    removed = orchestrator.cleanup(req.max_age_hours if req else None)
    return CleanupResponse(removed=removed)


@router.get("/{job_id}", response_model=JobDetailResponse)
async def get_job(
    job_id: str,
    orchestrator: UnifiedOrchestrator = Depends(get_orchestrator),
) -> JobDetailResponse:
    job = _require_job(orchestrator, job_id)
    return JobDetailResponse(
        **_status_fields(job.id, job.status),
        kind=job.kind.value,
        pipeline=job.pipeline.value if job.pipeline else None,
        delegate_job_id=job.delegate_job_id,
        compiled_text=job.compiled_text,
        audio_ref=job.audio_ref,
        segments=len(job.segments),
        chunks=len(job.scenes),
        analyses=len(job.analyses),
        failed_chunks=job.failed_chunks,
        created_at=job.created_at,
    )


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    orchestrator: UnifiedOrchestrator = Depends(get_orchestrator),
) -> JobStatusResponse:
    _require_job(orchestrator, job_id)
    return JobStatusResponse(**_status_fields(job_id, orchestrator.get_status(job_id)))


@router.delete("/{job_id}", status_code=204)
async def delete_job(
    job_id: str,
    orchestrator: UnifiedOrchestrator = Depends(get_orchestrator),
) -> None:
    if not orchestrator.delete_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
