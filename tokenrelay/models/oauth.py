"""
Domain models for OAuth token persistence.
"""

from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_ACCOUNT = "default"


class StoredToken(BaseModel):
    """A decrypted token record for one (provider, account) pair."""

    provider: str
    account: str = DEFAULT_ACCOUNT
    refresh_token: str = Field(..., repr=False)
    access_token: Optional[str] = Field(None, repr=False)
    expires_at: Optional[int] = Field(
        None, description="Absolute unix seconds; None when the provider gave no expiry."
    )
    scopes: Optional[str] = Field(None, description="Space-delimited granted scopes.")
    created_at: int
    updated_at: int


class Connection(BaseModel):
    """Listing projection of a token record; never carries the refresh token."""

    id: str
    provider: str
    account: str
    access_token: Optional[str] = Field(None, repr=False)
    expires_at: Optional[int] = None
    scopes: Optional[str] = None
    created_at: int
    updated_at: int

    @property
    def status(self) -> str:
        return "active" if self.access_token else "inactive"


class OAuthStateBinding(BaseModel):
    """The (provider, account) a handshake state resolves to."""

    provider: str
    account: str


def connection_id(provider: str, account: str) -> str:
    return f"{provider}:{account}"


__all__ = [
    "Connection",
    "DEFAULT_ACCOUNT",
    "OAuthStateBinding",
    "StoredToken",
    "connection_id",
]
