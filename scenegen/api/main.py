"""
FastAPI application for scenegen.

Endpoints:
- Create a document from an uploaded file
- List, get, rename, delete and reset documents
- Read a document's chapters, roles and scenes
- Get, edit or remove single chapters (edits only at chapterReady or failed)

When ``pipeline_enabled`` is set the app also runs a pipeline controller for
the lifetime of the server; any number of such servers (or CLI workers) may
share one store and one lease backend.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scenegen import __version__
from scenegen.api.routes import documents
from scenegen.api.schemas import HealthResponse
from scenegen.config.settings import Settings, get_settings
from scenegen.errors import (
    ChapterNotFound,
    DocumentNotFound,
    DuplicateDocument,
    IllegalTransition,
    InvalidDocument,
    PersistenceError,
)
from scenegen.runtime import (
    build_controller,
    build_generation_client,
    build_lease_manager,
    build_store,
)
from scenegen.store.repository import DocumentStore

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None, store: Optional[DocumentStore] = None) -> FastAPI:
    """Build the app. ``store`` overrides the one built from settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
        app.state.settings = settings
        app.state.store = store or build_store(settings)
        app.state.pipeline = None

        leases = client = None
        if settings.pipeline_enabled:
            leases = build_lease_manager(settings)
            client = build_generation_client(settings)
            controller = build_controller(app.state.store, leases, client, settings)
            app.state.pipeline = controller.start()

        yield

        if app.state.pipeline is not None:
            await app.state.pipeline.shutdown(timeout=settings.pipeline.renew_interval * 2)
            await client.close()
            await leases.close()

    app = FastAPI(
        title="scenegen API",
        description="Turns long-form documents into illustrated, narrated scenes",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    app.include_router(documents.router, prefix="/api", tags=["Documents"])

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        pipeline = getattr(request.app.state, "pipeline", None)
        return HealthResponse(
            version=__version__,
            pipeline_running=pipeline is not None and pipeline.running,
        )

    return app


def _register_error_handlers(app: FastAPI) -> None:
    def _handler(status_code: int):
        async def handle(request: Request, exc: Exception) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        return handle

    app.add_exception_handler(DocumentNotFound, _handler(404))
    app.add_exception_handler(ChapterNotFound, _handler(404))
    app.add_exception_handler(DuplicateDocument, _handler(409))
    app.add_exception_handler(IllegalTransition, _handler(409))
    app.add_exception_handler(InvalidDocument, _handler(400))
    app.add_exception_handler(PersistenceError, _handler(503))
