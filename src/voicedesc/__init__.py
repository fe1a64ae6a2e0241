"""voicedesc - dual-pipeline accessibility description orchestration."""

__version__ = "0.1.0"
