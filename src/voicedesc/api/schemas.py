"""Response schemas for the voicedesc API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class JobListItem(BaseModel):
    job_id: str
    kind: str
    pipeline: str | None = None
    status: str
    created_at: datetime


class JobErrorResponse(BaseModel):
    code: str
    message: str
    details: Any = None


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    step: str
    progress: int = 0
    message: str = ""
    error: JobErrorResponse | None = None
    updated_at: datetime


class JobDetailResponse(JobStatusResponse):
    kind: str
    pipeline: str | None = None
    delegate_job_id: str | None = None
    compiled_text: str | None = None
    audio_ref: str | None = None
    segments: int = 0
    chunks: int = 0
    analyses: int = 0
    failed_chunks: int = 0
    created_at: datetime


class CleanupRequest(BaseModel):
    max_age_hours: float | None = Field(None, gt=0, description="Defaults to the configured max age")


class CleanupResponse(BaseModel):
    removed: int


class HealthResponse(BaseModel):
    status: str
    version: str
    active_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
