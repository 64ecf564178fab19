"""Public schema exports."""

from .auth import OAuthCallbackResult, OAuthStartPayload, OAuthStartResponse
from .connections import ConnectionStatus, ConnectionSummary

__all__ = [
    "ConnectionStatus",
    "ConnectionSummary",
    "OAuthCallbackResult",
    "OAuthStartPayload",
    "OAuthStartResponse",
]
