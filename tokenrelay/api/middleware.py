"""
Cross-cutting HTTP behaviour applied to every inbound request.

Security headers, CORS and a per-client rate limit are installed here so the
route module only deals with relay semantics.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from tokenrelay.core.config import HttpSettings

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self'",
        "style-src 'self' 'unsafe-inline'",
    ]
)

# Applied unless the response (typically a relayed upstream one) already set them.
SECURITY_HEADERS = {
    "content-security-policy": CONTENT_SECURITY_POLICY,
    "x-content-type-options": "nosniff",
    "x-frame-options": "SAMEORIGIN",
    "referrer-policy": "no-referrer",
    "strict-transport-security": "max-age=15552000; includeSubDomains",
}


async def add_security_headers(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def _rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    # Called synchronously from SlowAPIMiddleware, so this must not be a coroutine.
    logger.warning(
        "Rate limit exceeded",
        extra={"client": get_remote_address(request), "path": request.url.path},
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "TooManyRequests",
            "message": "Rate limit exceeded, retry in 1 minute",
        },
    )


def build_limiter(settings: HttpSettings) -> Limiter:
    """One shared per-address budget across all routes; a zero limit disables it."""
    limit = settings.rate_limit_per_minute
    return Limiter(
        key_func=get_remote_address,
        application_limits=[f"{limit}/minute"] if limit else [],
        enabled=bool(limit),
    )


def install_http_middleware(app: FastAPI, settings: HttpSettings) -> None:
    """Register middleware; the last one added runs first on each request."""
    app.state.limiter = build_limiter(settings)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded)
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(add_security_headers)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=CORS_METHODS,
        allow_headers=["*"],
    )


__all__ = [
    "CONTENT_SECURITY_POLICY",
    "CORS_METHODS",
    "SECURITY_HEADERS",
    "add_security_headers",
    "build_limiter",
    "install_http_middleware",
]
