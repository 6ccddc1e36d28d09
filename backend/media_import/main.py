"""FastAPI application bootstrap with router wiring."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from media_import.api.routers import health, imports
from media_import.core.config import get_settings
from media_import.core.errors import (
    CommitError,
    ConfigError,
    ConflictError,
    MediaImportError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ConfigError: status.HTTP_400_BAD_REQUEST,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    CommitError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StorageError: status.HTTP_502_BAD_GATEWAY,
}


async def handle_pipeline_error(request: Request, exc: MediaImportError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "details": exc.details},
    )


def create_app() -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title=settings.app_name, version="0.1.0")

    cors_origins = settings.cors_origins
    logger.info(f"[CORS] Parsed allowed origins: {cors_origins}")

    # Allow origins from environment variable CORS_ORIGINS (comma-separated)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    app.add_exception_handler(MediaImportError, handle_pipeline_error)

    app.include_router(health.router)
    app.include_router(imports.router, prefix="/api/imports", tags=["imports"])

    return app


app = create_app()
