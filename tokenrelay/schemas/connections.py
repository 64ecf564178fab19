"""Schemas describing stored connections."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from tokenrelay.models.oauth import Connection


def _iso(timestamp: Optional[int]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class ConnectionSummary(BaseModel):
    """Connection as listed by ``/connections``; access tokens are never echoed."""

    id: str
    provider: str
    account: str
    status: str
    expires_at: Optional[int] = None
    scopes: Optional[str] = None
    created_at: int
    updated_at: int

    @classmethod
    def from_connection(cls, connection: Connection) -> "ConnectionSummary":
        return cls(
            id=connection.id,
            provider=connection.provider,
            account=connection.account,
            status=connection.status,
            expires_at=connection.expires_at,
            scopes=connection.scopes,
            created_at=connection.created_at,
            updated_at=connection.updated_at,
        )


class ConnectionStatus(BaseModel):
    """Human-oriented view used by ``/status``."""

    provider: str
    account: str
    status: str
    scopes: List[str]
    last_refreshed: Optional[str]
    expires_at: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_connection(cls, connection: Connection) -> "ConnectionStatus":
        return cls(
            provider=connection.provider,
            account=connection.account,
            status=connection.status,
            scopes=connection.scopes.split(" ") if connection.scopes else [],
            last_refreshed=_iso(connection.updated_at),
            expires_at=_iso(connection.expires_at),
            created_at=_iso(connection.created_at),
        )


__all__ = ["ConnectionStatus", "ConnectionSummary"]
