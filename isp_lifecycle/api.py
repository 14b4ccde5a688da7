"""
FastAPI application for the ISP lifecycle engine.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .core.errors import (
    DuplicateEntryError,
    ExternalDependencyError,
    FeatureDisabledError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from .db.base import init_database
from .logging_setup import configure_logging
from .routes import router

logger = structlog.get_logger()

settings = get_settings()

# First match wins; subclasses before their bases
ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (FeatureDisabledError, 403),
    (DuplicateEntryError, 409),
    (ExternalDependencyError, 502),
)


def status_for(exc: LifecycleError) -> int:
    for kind, status in ERROR_STATUS:
        if isinstance(exc, kind):
            return status
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("Starting ISP lifecycle API")

    try:
        init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise

    yield

    logger.info("Shutdown complete")


app = FastAPI(
    title="ISP Lifecycle",
    description="Plan-year completion tracking and annual renewal for Individual Support Plans",
    version=importlib.metadata.version("isp-lifecycle"),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    status = status_for(exc)
    body = exc.to_dict()
    if isinstance(exc, ExternalDependencyError):
        body.setdefault("audit_recorded", False)

    logger.warning(
        "request_failed",
        path=request.url.path,
        status=status,
        error=exc.code,
        message=exc.message,
    )
    return JSONResponse(status_code=status, content=body)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("isp-lifecycle")}


app.include_router(router)
