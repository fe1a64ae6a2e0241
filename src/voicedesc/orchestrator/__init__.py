"""Pipeline selection and unified orchestration."""

from voicedesc.orchestrator.selector import PipelineSelector
from voicedesc.orchestrator.unified import UnifiedOrchestrator

__all__ = ["PipelineSelector", "UnifiedOrchestrator"]
