"""
FastAPI application for Image Control Tower.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import get_settings
from .db.base import get_session_local, init_database
from .images.errors import (
    AlreadyExistsError,
    ConflictError,
    ImageStreamError,
    ImmutabilityError,
    NotFoundError,
    StaleGenerationError,
)
from .images.routes import router as images_router
from .logging_config import configure_logging
from .worker.controller import ImportController
from .worker.importer import RegistryImporter
from .worker.repository import SqlStreamRepository

logger = structlog.get_logger()

settings = get_settings()

ERROR_STATUS = {
    NotFoundError: 404,
    ConflictError: 409,
    AlreadyExistsError: 409,
    ImmutabilityError: 409,
    StaleGenerationError: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("Starting Image Control Tower", environment=settings.environment)

    await init_database()

    app.state.controller = None
    if settings.controller_enabled:
        controller = ImportController.from_settings(
            SqlStreamRepository(get_session_local()),
            RegistryImporter(default_registry=settings.registry_default_host),
            settings,
        )
        await controller.start()
        app.state.controller = controller

    yield

    logger.info("Shutting down Image Control Tower")
    if app.state.controller is not None:
        await app.state.controller.stop()
    logger.info("Shutdown complete")


def _version() -> str:
    return importlib.metadata.version("image-control-tower")


app = FastAPI(
    title="Image Control Tower",
    description="Image streams, tag history and import reconciliation",
    version=_version(),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ImageStreamError)
async def image_stream_error_handler(request: Request, exc: ImageStreamError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        422,
    )
    if status_code >= 409:
        logger.info("request_rejected", path=request.url.path, error=exc.code)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": {"error": "VALIDATION_ERROR", "errors": exc.errors(include_url=False)}},
    )


app.include_router(images_router)


@app.get("/health", tags=["system"])
async def health() -> Dict[str, Any]:
    """Basic health check endpoint."""
    controller = getattr(app.state, "controller", None)
    return {
        "status": "ok",
        "controller": "running" if controller is not None and controller.is_running else "stopped",
    }


@app.get("/version", tags=["system"])
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": _version()}
