"""FastAPI dependencies."""

from __future__ import annotations

from voicedesc.orchestrator.unified import UnifiedOrchestrator

_orchestrator: UnifiedOrchestrator | None = None


def init_orchestrator(orchestrator: UnifiedOrchestrator) -> UnifiedOrchestrator:
    """Install the global orchestrator (called at app startup)."""
    global _orchestrator
    _orchestrator = orchestrator
    return _orchestrator


def get_orchestrator() -> UnifiedOrchestrator:
    """Dependency that provides the UnifiedOrchestrator instance."""
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not initialized, call init_orchestrator() first")
    return _orchestrator
