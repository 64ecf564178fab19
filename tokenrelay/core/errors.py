"""
Typed failures raised by the token store, lifecycle manager and proxy.

Each error carries a stable machine-readable ``kind`` and the HTTP status the
API layer responds with. Messages name providers and accounts only; tokens,
keys and client secrets never appear in them.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Optional


class RelayError(Exception):
    """Base class for failures surfaced to API callers."""

    kind = "InternalError"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnknownProvider(RelayError):
    kind = "UnknownProvider"
    status_code = HTTPStatus.NOT_FOUND

    def __init__(self, provider: str) -> None:
        super().__init__(
            f'Provider "{provider}" is not registered. Check providers.yml.'
        )
        self.provider = provider


class NoConnection(RelayError):
    kind = "NoConnection"
    status_code = HTTPStatus.NOT_FOUND

    def __init__(self, provider: str, account: Optional[str] = None) -> None:
        if account:
            message = (
                f'No connection found for provider "{provider}", account "{account}". '
                f"Connect via POST /auth/{provider}/start."
            )
        else:
            message = (
                f'No connection found for provider "{provider}". '
                f"Connect via POST /auth/{provider}/start, then use ?account=<name> "
                "if you have multiple connections."
            )
        super().__init__(message)
        self.provider = provider
        self.account = account


class TokenRefreshFailed(RelayError):
    """Raised when the provider rejects (or never answers) a refresh exchange."""

    kind = "TokenRefreshFailed"
    status_code = HTTPStatus.UNAUTHORIZED

    def __init__(
        self, provider: str, account: str, *, upstream_status: Optional[int] = None
    ) -> None:
        detail = (
            f"upstream status {upstream_status}"
            if upstream_status is not None
            else "token endpoint unreachable"
        )
        super().__init__(
            f'Could not refresh access token for "{provider}/{account}" ({detail}). '
            f"Re-authenticate via POST /auth/{provider}/start."
        )
        self.provider = provider
        self.account = account
        self.upstream_status = upstream_status


class UpstreamError(RelayError):
    kind = "UpstreamError"
    status_code = HTTPStatus.BAD_GATEWAY

    def __init__(self, provider: str) -> None:
        super().__init__(f'Failed to reach upstream for provider "{provider}".')
        self.provider = provider


class StorageUnavailable(RelayError):
    kind = "StorageUnavailable"
    status_code = HTTPStatus.SERVICE_UNAVAILABLE


class InvalidState(RelayError):
    kind = "InvalidState"
    status_code = HTTPStatus.BAD_REQUEST


class TokenExchangeFailed(RelayError):
    kind = "TokenExchangeFailed"
    status_code = HTTPStatus.BAD_GATEWAY


class MissingRefreshToken(RelayError):
    kind = "MissingRefreshToken"
    status_code = HTTPStatus.BAD_GATEWAY

    def __init__(self, provider: str) -> None:
        super().__init__(
            f'No refresh token returned by "{provider}". '
            "Ensure you requested offline access."
        )
        self.provider = provider


class Unauthorized(RelayError):
    kind = "Unauthorized"
    status_code = HTTPStatus.UNAUTHORIZED


__all__ = [
    "InvalidState",
    "MissingRefreshToken",
    "NoConnection",
    "RelayError",
    "StorageUnavailable",
    "TokenExchangeFailed",
    "TokenRefreshFailed",
    "Unauthorized",
    "UnknownProvider",
    "UpstreamError",
]
