"""Custom exceptions for voicedesc."""

from __future__ import annotations

from typing import Any


class VoiceDescError(Exception):
    """Base exception for voicedesc.

    Every error carries a stable ``code`` so that job records and result
    envelopes can report failures as ``{code, message, details}``.
    """

    code = "VOICEDESC_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        """Render as the structured error payload attached to jobs."""
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(VoiceDescError):
    """Malformed or unsupported request. Never retried."""

    code = "VALIDATION_ERROR"


class ExternalServiceError(VoiceDescError):
    """A collaborator (segmentation, analysis, synthesis, storage) failed."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        service: str = "",
        retryable: bool = False,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.service = service
        self.retryable = retryable

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.service:
            payload["service"] = self.service
        return payload


class BudgetExceededError(VoiceDescError):
    """A batch or cost operation would exceed its configured budget."""

    code = "BUDGET_EXCEEDED"


class ResourceExhaustionError(VoiceDescError):
    """Cache or memory bounds exceeded in a way eviction cannot fix."""

    code = "RESOURCE_EXHAUSTED"


class InvalidTransitionError(VoiceDescError):
    """A job status update would move backwards or leave a terminal state."""

    code = "INVALID_TRANSITION"


class StepValidationError(VoiceDescError):
    """A pipeline step produced output the next step cannot use."""

    code = "STEP_VALIDATION_FAILED"


class JobNotFoundError(VoiceDescError):
    """No job is registered under the given id."""

    code = "JOB_NOT_FOUND"
