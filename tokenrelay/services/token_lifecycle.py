"""
Helpers for resolving stored connections and keeping their access tokens fresh.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from tokenrelay.clients.oauth import OAuthProviderClient, OAuthTokenExchangeError
from tokenrelay.clients.sqlite_store import SQLiteTokenStore
from tokenrelay.core.errors import NoConnection, TokenRefreshFailed
from tokenrelay.core.providers import ProviderConfig
from tokenrelay.models.oauth import DEFAULT_ACCOUNT, StoredToken

logger = logging.getLogger(__name__)

REFRESH_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class ResolvedToken:
    record: StoredToken
    account: str


class TokenLifecycleService:
    """Decides when tokens need refreshing and performs the refresh exchange."""

    def __init__(
        self,
        store: SQLiteTokenStore,
        oauth_client: OAuthProviderClient,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._clock = clock

    async def resolve_token(
        self, provider: str, account: Optional[str] = None
    ) -> ResolvedToken:
        """
        Find the connection a request should use.

        An explicit account is looked up exactly. Without one, the account named
        ``default`` wins, then a provider's single connection; several
        connections with no ``default`` among them are ambiguous and resolve to
        nothing.
        """
        if account:
            record = await self._store.get_token(provider, account)
        else:
            record = await self._store.get_token(provider, DEFAULT_ACCOUNT)
            if record is None:
                record = await self._store.get_default_token(provider)
        if record is None:
            raise NoConnection(provider, account)
        return ResolvedToken(record=record, account=record.account)

    def needs_refresh(
        self, record: StoredToken, buffer_seconds: int = REFRESH_BUFFER_SECONDS
    ) -> bool:
        if not record.access_token:
            return True
        if record.expires_at is None:
            return False
        return record.expires_at - int(self._clock()) < buffer_seconds

    async def ensure_fresh(
        self, record: StoredToken, provider: ProviderConfig
    ) -> StoredToken:
        """Return ``record`` as-is, or refreshed when it is missing or near expiry."""
        buffer_seconds = provider.token_expiry_buffer_seconds
        if buffer_seconds is None:
            buffer_seconds = REFRESH_BUFFER_SECONDS
        if not self.needs_refresh(record, buffer_seconds):
            return record
        return await self.refresh(record, provider)

    async def refresh(self, record: StoredToken, provider: ProviderConfig) -> StoredToken:
        """Run the refresh exchange and persist the result through the store."""
        refreshed_at = int(self._clock())
        try:
            grant = await self._oauth.refresh_access_token(provider, record.refresh_token)
        except OAuthTokenExchangeError as exc:
            logger.warning(
                "Token refresh failed for %s/%s: %s",
                record.provider,
                record.account,
                exc,
            )
            raise TokenRefreshFailed(
                record.provider, record.account, upstream_status=exc.status_code
            ) from exc

        expires_at = grant.expires_at(refreshed_at)
        if grant.refresh_token and grant.refresh_token != record.refresh_token:
            # Provider rotated the refresh token; the old one may already be revoked.
            await self._store.store_token(
                provider=record.provider,
                account=record.account,
                refresh_token=grant.refresh_token,
                access_token=grant.access_token,
                expires_at=expires_at,
                scopes=record.scopes,
            )
        else:
            await self._store.update_access_token(
                record.provider, record.account, grant.access_token, expires_at
            )

        logger.info(
            "Refreshed access token",
            extra={
                "provider": record.provider,
                "account": record.account,
                "expires_at": expires_at,
            },
        )
        return record.model_copy(
            update={
                "access_token": grant.access_token,
                "expires_at": expires_at,
                "refresh_token": grant.refresh_token or record.refresh_token,
                "updated_at": refreshed_at,
            }
        )


__all__ = ["REFRESH_BUFFER_SECONDS", "ResolvedToken", "TokenLifecycleService"]
