"""Expose constructed client wrappers."""

from .oauth import OAuthProviderClient, OAuthTokenExchangeError, TokenGrant
from .sqlite_store import SQLiteTokenStore

__all__ = [
    "OAuthProviderClient",
    "OAuthTokenExchangeError",
    "SQLiteTokenStore",
    "TokenGrant",
]
