from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from _fakes import RecordingTransport, make_provider, oauth_client_for
from tokenrelay.clients.oauth import OAuthProviderClient, OAuthTokenExchangeError, TokenGrant


def test_authorization_url_includes_extra_params_and_keeps_existing_query() -> None:
    provider = make_provider(
        "gcal",
        auth_url="https://accounts.example.com/o/oauth2/auth?hd=example.com",
        extra_params={"access_type": "offline", "prompt": "consent"},
    )

    url = OAuthProviderClient.build_authorization_url(
        provider, state="abc", redirect_uri="http://localhost:3001/auth/gcal/callback"
    )

    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert parts.netloc == "accounts.example.com"
    assert parts.path == "/o/oauth2/auth"
    assert query == {
        "hd": ["example.com"],
        "response_type": ["code"],
        "client_id": ["gcal-client-id"],
        "redirect_uri": ["http://localhost:3001/auth/gcal/callback"],
        "scope": ["daily personal"],
        "state": ["abc"],
        "access_type": ["offline"],
        "prompt": ["consent"],
    }


@pytest.mark.anyio
async def test_code_exchange_parses_grant() -> None:
    transport = RecordingTransport(
        lambda request: httpx.Response(
            200,
            json={
                "access_token": "a",
                "refresh_token": "r",
                "expires_in": "3599",
                "scope": ["daily", "personal"],
            },
        )
    )

    grant = await oauth_client_for(transport).exchange_authorization_code(
        make_provider(), code="the-code", redirect_uri="http://relay.test/cb"
    )

    assert grant == TokenGrant(access_token="a", refresh_token="r", expires_in=3599, scope="daily personal")
    assert repr(grant) == "TokenGrant(expires_in=3599, scope='daily personal')"
    [request] = transport.requests
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    assert parse_qs(request.content.decode())["code"] == ["the-code"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response, status",
    [
        (httpx.Response(401, json={"error": "invalid_client"}), 401),
        (httpx.Response(500, text="boom"), 500),
        (httpx.Response(200, text="not json"), 200),
        (httpx.Response(200, json={"token_type": "bearer"}), 200),
        (httpx.Response(200, json=["access_token"]), 200),
        (httpx.Response(200, json={"access_token": "a", "expires_in": "3600s"}), 200),
        (httpx.Response(200, json={"access_token": "a", "expires_in": {"s": 1}}), 200),
    ],
)
async def test_token_endpoint_failures(response: httpx.Response, status: int) -> None:
    transport = RecordingTransport(lambda request: response)

    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await oauth_client_for(transport).refresh_access_token(make_provider(), "secret-refresh")

    assert excinfo.value.status_code == status
    assert "secret-refresh" not in str(excinfo.value)
    assert "oura-client-secret" not in str(excinfo.value)


@pytest.mark.anyio
async def test_rejected_exchange_names_the_oauth_error_code() -> None:
    transport = RecordingTransport(
        lambda request: httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Token revoked"}
        )
    )

    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await oauth_client_for(transport).refresh_access_token(make_provider(), "r")

    assert "invalid_grant" in str(excinfo.value)
    assert "400" in str(excinfo.value)
