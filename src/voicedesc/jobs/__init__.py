"""Job management for voicedesc."""

from voicedesc.jobs.models import HealthSummary, Job, JobError, JobState, JobStatus, JobStep

__all__ = ["HealthSummary", "Job", "JobError", "JobState", "JobStatus", "JobStep"]
