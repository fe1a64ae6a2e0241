"""Thread-safe in-memory job store."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from voicedesc.errors import JobNotFoundError
from voicedesc.jobs.models import Job, JobError, JobState, JobStatus, JobStep
from voicedesc.pipeline import state as transitions

logger = logging.getLogger(__name__)

StatusListener = Callable[[str, JobStatus], None]


class JobStore:
    """Owns job records and serializes every status change.

    Listeners receive a snapshot of the status after each change, which
    is how progress is observed without polling.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._listeners: list[StatusListener] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def subscribe(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def add(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job
            snapshot = replace(job.status)
        self._notify(job.id, snapshot)
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}", details={"job_id": job_id})
        return job

    def list(self) -> list[Job]:
        """List all jobs, most recent first."""
        with self._lock:
            jobs = list(self._jobs.values())
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def cleanup(self, max_age_hours: float, now: datetime | None = None) -> int:
        """Remove finished jobs created more than ``max_age_hours`` ago.

        Jobs still pending or processing are kept regardless of age.
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=max_age_hours)
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.created_at < cutoff and job.status.state.is_terminal
            ]
            for job_id in stale:
                del self._jobs[job_id]
        if stale:
            logger.info("Cleaned up %d job(s) older than %sh", len(stale), max_age_hours)
        return len(stale)

    def counts(self) -> dict[JobState, int]:
        with self._lock:
            counts = {state: 0 for state in JobState}
            for job in self._jobs.values():
                counts[job.status.state] += 1
        return counts

    def advance(
        self,
        job_id: str,
        *,
        step: JobStep | None = None,
        progress: int | None = None,
        message: str | None = None,
        state: JobState = JobState.PROCESSING,
    ) -> JobStatus:
        job = self.require(job_id)
        with self._lock:
            transitions.advance(job.status, step=step, progress=progress, message=message, state=state)
            snapshot = replace(job.status)
        self._notify(job_id, snapshot)
        return snapshot

    def fail(self, job_id: str, error: JobError, message: str | None = None) -> JobStatus:
        job = self.require(job_id)
        with self._lock:
            transitions.fail(job.status, error, message)
            snapshot = replace(job.status)
        self._notify(job_id, snapshot)
        return snapshot

    def complete(self, job_id: str, result: Any = None, message: str = "Complete") -> JobStatus:
        job = self.require(job_id)
        with self._lock:
            transitions.complete(job.status, result, message)
            snapshot = replace(job.status)
        self._notify(job_id, snapshot)
        return snapshot

    def _notify(self, job_id: str, snapshot: JobStatus) -> None:
        for listener in self._listeners:
            try:
                listener(job_id, snapshot)
            except Exception:
                logger.exception("Status listener failed for job %s", job_id)
