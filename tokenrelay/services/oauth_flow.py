"""
Authorization-code handshake: issue consent URLs and complete callbacks.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

from tokenrelay.clients.oauth import OAuthProviderClient, OAuthTokenExchangeError
from tokenrelay.clients.sqlite_store import OAUTH_STATE_TTL_SECONDS, SQLiteTokenStore
from tokenrelay.core.errors import (
    InvalidState,
    MissingRefreshToken,
    TokenExchangeFailed,
    UnknownProvider,
)
from tokenrelay.core.providers import ProviderConfig, ProviderRegistry
from tokenrelay.models.oauth import DEFAULT_ACCOUNT, OAuthStateBinding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationStart:
    auth_url: str
    redirect_uri: str
    state: str
    expires_in: int = OAUTH_STATE_TTL_SECONDS


class OAuthFlowService:
    """Persist handshake state and turn callbacks into stored connections."""

    def __init__(
        self,
        store: SQLiteTokenStore,
        registry: ProviderRegistry,
        oauth_client: OAuthProviderClient,
        *,
        base_url: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._registry = registry
        self._oauth = oauth_client
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    def redirect_uri(self, provider: str) -> str:
        return f"{self._base_url}/auth/{provider}/callback"

    def _provider(self, slug: str) -> ProviderConfig:
        provider = self._registry.get(slug)
        if provider is None:
            raise UnknownProvider(slug)
        return provider

    async def start(
        self, provider_slug: str, account: Optional[str] = None
    ) -> AuthorizationStart:
        provider = self._provider(provider_slug)
        account = account or DEFAULT_ACCOUNT
        state = secrets.token_hex(24)
        await self._store.save_oauth_state(state, provider_slug, account)

        redirect_uri = self.redirect_uri(provider_slug)
        auth_url = self._oauth.build_authorization_url(
            provider, state=state, redirect_uri=redirect_uri
        )
        return AuthorizationStart(auth_url=auth_url, redirect_uri=redirect_uri, state=state)

    async def complete(
        self,
        provider_slug: str,
        *,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> OAuthStateBinding:
        """Consume the handshake state, exchange the code and store the tokens."""
        if error:
            raise InvalidState(f"OAuth error: {error}")
        if not code or not state:
            raise InvalidState("Missing code or state parameter.")

        binding = await self._store.consume_oauth_state(state)
        if binding is None or binding.provider != provider_slug:
            raise InvalidState("Invalid or expired state. Please try again.")

        provider = self._provider(provider_slug)
        try:
            grant = await self._oauth.exchange_authorization_code(
                provider, code=code, redirect_uri=self.redirect_uri(provider_slug)
            )
        except OAuthTokenExchangeError as exc:
            logger.error("Token exchange failed for %s: %s", provider_slug, exc)
            raise TokenExchangeFailed(
                "Token exchange failed. Check server logs."
            ) from exc

        if not grant.refresh_token:
            raise MissingRefreshToken(provider_slug)

        await self._store.store_token(
            provider=provider_slug,
            account=binding.account,
            refresh_token=grant.refresh_token,
            access_token=grant.access_token,
            expires_at=(
                int(self._clock()) + grant.expires_in if grant.expires_in else None
            ),
            scopes=grant.scope or " ".join(provider.scopes),
        )
        logger.info(
            "OAuth connection established",
            extra={"provider": provider_slug, "account": binding.account},
        )
        return binding


__all__ = ["AuthorizationStart", "OAuthFlowService"]
