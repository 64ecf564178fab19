"""
FastAPI application entrypoint for the token relay.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tokenrelay import __version__
from tokenrelay.api.middleware import install_http_middleware
from tokenrelay.api.routes import router as api_router
from tokenrelay.core.config import get_settings
from tokenrelay.core.errors import RelayError
from tokenrelay.core.logging import configure_logging
from tokenrelay.dependencies import (
    get_oauth_http_client,
    get_provider_registry,
    get_refresh_scheduler,
    get_token_cipher_service,
    get_token_store,
    get_upstream_http_client,
)
from tokenrelay.services.token_cipher import CipherError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start long-lived services before serving and release them on shutdown."""
    settings = get_settings()
    # A missing or malformed ENCRYPTION_KEY must abort start-up.
    get_token_cipher_service().ensure_ready()
    await get_token_store().init()
    registry = get_provider_registry()
    logger.info(
        "Token relay starting",
        extra={
            "environment": settings.environment,
            "providers": sorted(registry.providers),
            "refresh_enabled": settings.refresh.enabled,
        },
    )

    scheduler = get_refresh_scheduler() if settings.refresh.enabled else None
    if scheduler is not None:
        scheduler.start()
    try:
        yield
    finally:
        try:
            if scheduler is not None:
                await scheduler.stop()
        finally:
            await get_upstream_http_client().aclose()
            await get_oauth_http_client().aclose()


async def _relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed: %s",
            exc.kind,
            extra={"path": request.url.path, "method": request.method},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "message": exc.message},
    )


async def _cipher_error_handler(request: Request, exc: CipherError) -> JSONResponse:
    logger.error(
        "Stored secret could not be decrypted: %s",
        exc.kind,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={"error": exc.kind, "message": "Stored credential could not be decrypted."},
    )


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code == 404:
        error, message = "NotFound", "Route not found"
    else:
        error = HTTPStatus(exc.status_code).phrase.replace(" ", "")
        message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": error, "message": message},
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled route error",
        exc_info=exc,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "message": "An unexpected error occurred"},
    )


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Token Relay",
        version=__version__,
        description="Transparent OAuth2 proxy with automatic token refresh.",
        lifespan=lifespan,
    )
    app.add_exception_handler(RelayError, _relay_error_handler)
    app.add_exception_handler(CipherError, _cipher_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    install_http_middleware(app, settings.http)
    app.include_router(api_router)
    return app


app = create_app()

__all__ = ["app", "create_app", "lifespan"]
