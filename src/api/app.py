"""FastAPI application for the club dues engine."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.config import get_api_settings
from src.api.dues import router as dues_router
from src.services import async_engine, init_models
from src.services.errors import (
    DuesError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS: list[tuple[type[DuesError], int]] = [
    (InvalidTransitionError, 409),
    (ValidationError, 400),
    (NotFoundError, 404),
    (PersistenceError, 503),
]


def status_for(error: DuesError) -> int:
    """HTTP status code of an engine error."""
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create missing tables on startup and dispose the engine on shutdown."""
    await init_models(async_engine)
    logger.info("Database ready")
    yield
    await async_engine.dispose()


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    settings = get_api_settings()
    app = FastAPI(
        title=settings.api_title,
        description="Club dues billing and ledger reconciliation",
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DuesError)
    async def dues_error_handler(request: Request, exc: DuesError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(
            status_code=status,
            content={"error": {"code": exc.code, "message": exc.message}},
        )

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {"status": "ok"}

    app.include_router(dues_router)
    return app


app = create_app()

__all__ = ["app", "create_app", "status_for"]
