"""Token-metered backend adapters."""

from voicedesc.services.llm.metered import MeteredAnalyzer, MeteredResponse

__all__ = ["MeteredAnalyzer", "MeteredResponse"]
