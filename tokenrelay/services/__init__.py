"""Service layer exports."""

from .oauth_flow import AuthorizationStart, OAuthFlowService
from .proxy import ProxyForwarder, ProxyRequest, ProxyResponse
from .refresh_scheduler import RefreshCycleReport, RefreshScheduler
from .token_cipher import TokenCipherService
from .token_lifecycle import ResolvedToken, TokenLifecycleService

__all__ = [
    "AuthorizationStart",
    "OAuthFlowService",
    "ProxyForwarder",
    "ProxyRequest",
    "ProxyResponse",
    "RefreshCycleReport",
    "RefreshScheduler",
    "ResolvedToken",
    "TokenCipherService",
    "TokenLifecycleService",
]
