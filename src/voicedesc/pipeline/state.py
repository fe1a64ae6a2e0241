"""Job status transitions.

All status changes go through :func:`advance`, :func:`fail` and
:func:`complete`. Step and progress never move backwards and a job that
reached ``completed`` or ``failed`` is never touched again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from voicedesc.errors import InvalidTransitionError
from voicedesc.jobs.models import JobError, JobState, JobStatus, JobStep

logger = logging.getLogger(__name__)


def _check_open(status: JobStatus) -> None:
    if status.state.is_terminal:
        raise InvalidTransitionError(
            f"Cannot update a job in terminal state {status.state.value}",
            details={"state": status.state.value, "step": status.step.value},
        )


def advance(
    status: JobStatus,
    *,
    step: JobStep | None = None,
    progress: int | None = None,
    message: str | None = None,
    state: JobState = JobState.PROCESSING,
) -> JobStatus:
    """Move a job forward.

    Args:
        status: Status record to update in place.
        step: New step; must not precede the current one.
        progress: New progress percentage; must not be lower than the current one.
        message: Human-readable note for observers.
        state: ``pending`` or ``processing``. Use :func:`fail` and
            :func:`complete` for terminal states.

    Returns:
        The same status record.

    Raises:
        InvalidTransitionError: If the update would move the job backwards.
    """
    _check_open(status)
    if state.is_terminal:
        raise InvalidTransitionError("Use fail() or complete() for terminal states")
    if state == JobState.PENDING and status.state == JobState.PROCESSING:
        raise InvalidTransitionError("A processing job cannot return to pending")
    if step is not None and step.order < status.step.order:
        raise InvalidTransitionError(
            f"Step cannot move from {status.step.value} back to {step.value}"
        )
    if progress is not None:
        if not 0 <= progress <= 100:
            raise InvalidTransitionError(f"Progress {progress} is out of range")
        if progress < status.progress:
            raise InvalidTransitionError(
                f"Progress cannot decrease from {status.progress} to {progress}"
            )

    status.state = state
    if step is not None:
        status.step = step
    if progress is not None:
        status.progress = progress
    if message is not None:
        status.message = message
    status.updated_at = datetime.now(timezone.utc)
    logger.debug(
        "Status -> %s/%s %d%% %s", status.state.value, status.step.value, status.progress, status.message
    )
    return status


def fail(status: JobStatus, error: JobError, message: str | None = None) -> JobStatus:
    """Mark a job failed, keeping the step and progress where it stopped."""
    _check_open(status)
    status.state = JobState.FAILED
    status.error = error
    status.message = message or error.message
    status.updated_at = datetime.now(timezone.utc)
    return status


def complete(status: JobStatus, result: Any = None, message: str = "Complete") -> JobStatus:
    """Mark a job completed at 100%."""
    _check_open(status)
    status.state = JobState.COMPLETED
    status.step = JobStep.COMPLETED
    status.progress = 100
    status.message = message
    status.result = result
    status.updated_at = datetime.now(timezone.utc)
    return status
