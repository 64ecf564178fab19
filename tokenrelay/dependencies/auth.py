"""API-key authentication for protected routes."""

from __future__ import annotations

import hashlib
import hmac

from fastapi import Request

from tokenrelay.core.config import AppSettings
from tokenrelay.core.errors import RelayError, Unauthorized

from .config import SettingsDependency


class ApiKeyNotConfigured(RelayError):
    kind = "Internal"


def _digest(value: str) -> bytes:
    return hashlib.sha256(value.encode("utf-8")).digest()


async def require_api_key(
    request: Request, settings: AppSettings = SettingsDependency
) -> None:
    """Check ``Authorization: Bearer <API_KEY>`` with a constant-time comparison."""
    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        raise Unauthorized("Authorization: Bearer <api_key> header required")

    expected = settings.security.api_key
    if not expected:
        raise ApiKeyNotConfigured("API_KEY not configured")

    if not hmac.compare_digest(_digest(header[len("Bearer "):]), _digest(expected)):
        raise Unauthorized("Invalid API key")


__all__ = ["ApiKeyNotConfigured", "require_api_key"]
