"""Application factory for the voicedesc status API."""

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI

from voicedesc import __version__
from voicedesc.api.deps import init_orchestrator
from voicedesc.api.routes import health, jobs
from voicedesc.config import configure_logging
from voicedesc.orchestrator.unified import UnifiedOrchestrator


def create_app(orchestrator: UnifiedOrchestrator) -> FastAPI:
    """Create the FastAPI application around an already wired orchestrator."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(orchestrator.settings.log_level)
        orchestrator.settings.ensure_directories()
        yield

    init_orchestrator(orchestrator)
    app = FastAPI(
        title="voicedesc",
        description="Accessibility description jobs across cloud-vision and LLM pipelines",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(jobs.router)

    return app
