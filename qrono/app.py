"""
FastAPI application entry point for the Qrono backend.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from qrono.config import Settings, get_settings
from qrono.errors import QronoError, ServerError
from qrono.routes import router
from qrono.schemas import HealthResponse

logger = logging.getLogger(__name__)

GENERIC_ERROR = {"detail": "Server Error", "code": "server_error"}


async def handle_qrono_error(request: Request, exc: QronoError) -> JSONResponse:
    if isinstance(exc, ServerError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content=GENERIC_ERROR)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error in %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=GENERIC_ERROR)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=GENERIC_ERROR)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Qrono Backend (FastAPI)", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"],
        allow_headers=["Content-Type", settings.auth_header],
    )
    app.add_exception_handler(QronoError, handle_qrono_error)
    app.add_exception_handler(SQLAlchemyError, handle_database_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)

    # Local disk blobs are served directly, like any other static file.
    if settings.upload_dir and not settings.s3_bucket and not settings.use_in_memory_backends:
        Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
        app.mount(
            settings.uploads_url_path,
            StaticFiles(directory=settings.upload_dir, html=False),
            name="uploads",
        )

    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse(ok=True)

    return app


app = create_app()
