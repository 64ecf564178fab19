"""
OAuth2 token endpoint utilities.

These helpers build authorization URLs and perform the authorization-code and
refresh-token exchanges against any registered provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from tokenrelay.core.providers import ProviderConfig

DEFAULT_EXPIRES_IN_SECONDS = 3600


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint fails or returns an unusable payload."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by a provider's token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None

    def expires_at(self, now: int) -> int:
        return now + (self.expires_in or DEFAULT_EXPIRES_IN_SECONDS)

    def __repr__(self) -> str:
        return f"TokenGrant(expires_in={self.expires_in!r}, scope={self.scope!r})"


class OAuthProviderClient:
    """Talk to provider authorization and token endpoints."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    @staticmethod
    def build_authorization_url(
        provider: ProviderConfig, *, state: str, redirect_uri: str
    ) -> str:
        """Construct the consent URL, keeping any query already on ``auth_url``."""
        parts = urlsplit(provider.auth_url)
        params: Dict[str, str] = dict(parse_qsl(parts.query))
        params.update(
            {
                "response_type": "code",
                "client_id": provider.client_id,
                "redirect_uri": redirect_uri,
                "scope": " ".join(provider.scopes),
                "state": state,
            }
        )
        params.update(provider.extra_params)
        return urlunsplit(parts._replace(query=urlencode(params)))

    async def exchange_authorization_code(
        self, provider: ProviderConfig, *, code: str, redirect_uri: str
    ) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
            "redirect_uri": redirect_uri,
        }
        return await self._post_token_request(provider, payload)

    async def refresh_access_token(
        self, provider: ProviderConfig, refresh_token: str
    ) -> TokenGrant:
        """Mint a new access token using a stored refresh token."""
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
        }
        return await self._post_token_request(provider, payload)

    async def _post_token_request(
        self, provider: ProviderConfig, payload: Dict[str, str]
    ) -> TokenGrant:
        grant_type = payload["grant_type"]
        try:
            response = await self._http.post(
                provider.token_url,
                data=payload,
                headers={"accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(
                f"{provider.slug} token endpoint unreachable during {grant_type}: "
                f"{type(exc).__name__}"
            ) from exc

        if not response.is_success:
            raise OAuthTokenExchangeError(
                f"{provider.slug} {grant_type} failed with status "
                f"{response.status_code}{_describe_error(response)}",
                status_code=response.status_code,
            )

        try:
            token_payload: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError(
                f"{provider.slug} returned a non-JSON token response.",
                status_code=response.status_code,
            ) from exc

        if not isinstance(token_payload, dict):
            token_payload = {}
        access_token = token_payload.get("access_token")
        if not access_token:
            raise OAuthTokenExchangeError(
                f"Incomplete {grant_type} payload returned from {provider.slug}.",
                status_code=response.status_code,
            )

        expires_in = token_payload.get("expires_in")
        try:
            expires_in = int(expires_in) if expires_in else None
        except (TypeError, ValueError) as exc:
            raise OAuthTokenExchangeError(
                f"{provider.slug} returned a non-numeric expires_in during {grant_type}.",
                status_code=response.status_code,
            ) from exc
        scope = token_payload.get("scope")
        if isinstance(scope, list):
            scope = " ".join(str(item) for item in scope)
        return TokenGrant(
            access_token=str(access_token),
            refresh_token=token_payload.get("refresh_token") or None,
            expires_in=expires_in,
            scope=scope or None,
        )


def _describe_error(response: httpx.Response) -> str:
    """Pull the OAuth ``error`` code from a failed response, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return f" ({body['error']})"
    return ""


__all__ = [
    "DEFAULT_EXPIRES_IN_SECONDS",
    "OAuthProviderClient",
    "OAuthTokenExchangeError",
    "TokenGrant",
]
