"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class OAuthStartPayload(BaseModel):
    """Body accepted when starting an OAuth flow."""

    account: Optional[str] = Field(
        None,
        min_length=1,
        max_length=128,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Connection name; defaults to 'default'.",
    )


class OAuthStartResponse(BaseModel):
    auth_url: str
    redirect_uri: str
    state: str
    expires_in: int


class OAuthCallbackResult(BaseModel):
    status: str = "connected"
    provider: str
    account: str


__all__ = ["OAuthCallbackResult", "OAuthStartPayload", "OAuthStartResponse"]
