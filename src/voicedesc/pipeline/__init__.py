"""Job state machine and job storage."""

from voicedesc.pipeline.store import JobStore

__all__ = ["JobStore"]
