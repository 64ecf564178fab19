from __future__ import annotations

import gzip
from urllib.parse import parse_qs

import httpx
import pytest

from _fakes import TOKEN_URL, FakeClock, RecordingTransport, oauth_client_for
from tokenrelay.clients.sqlite_store import SQLiteTokenStore
from tokenrelay.core.errors import NoConnection, TokenRefreshFailed, UnknownProvider, UpstreamError
from tokenrelay.core.providers import ProviderRegistry
from tokenrelay.services.proxy import (
    ProxyForwarder,
    ProxyRequest,
    build_forward_headers,
    build_upstream_url,
)
from tokenrelay.services.token_lifecycle import TokenLifecycleService

UPSTREAM_HOST = "api.oura.example.com"


class UpstreamStub:
    """Answers the token endpoint and the provider API from one transport."""

    def __init__(
        self,
        *,
        token_status: int = 200,
        api_status: int = 200,
        api_headers: dict | None = None,
        api_body: bytes = b'{"data": []}',
    ) -> None:
        self.token_status = token_status
        self.api_status = api_status
        self.api_headers = api_headers or {"content-type": "application/json"}
        self.api_body = api_body
        self.transport = RecordingTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "NEW", "expires_in": 3600})
        return httpx.Response(
            self.api_status, headers=self.api_headers, content=self.api_body
        )

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [req for req in self.transport.requests if str(req.url) == TOKEN_URL]

    @property
    def api_requests(self) -> list[httpx.Request]:
        return self.transport.requests_to(UPSTREAM_HOST)


def _forwarder(
    store: SQLiteTokenStore, registry: ProviderRegistry, stub: UpstreamStub, clock: FakeClock
) -> ProxyForwarder:
    lifecycle = TokenLifecycleService(store, oauth_client_for(stub.transport), clock=clock)
    return ProxyForwarder(registry, lifecycle, httpx.AsyncClient(transport=stub.transport))


@pytest.mark.anyio
async def test_expired_token_is_refreshed_once_and_forwarded(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura",
        account="daniel",
        refresh_token="R",
        access_token="OLD",
        expires_at=int(clock.now) - 100,
    )
    stub = UpstreamStub()
    forwarder = _forwarder(store, registry, stub, clock)

    response = await forwarder.forward(
        ProxyRequest(
            provider="oura",
            path="v2/usercollection/daily_sleep",
            method="GET",
            query_params=[("account", "daniel"), ("start_date", "2024-01-01")],
        )
    )

    assert response.status_code == 200
    assert response.content == b'{"data": []}'
    assert len(stub.token_requests) == 1
    assert parse_qs(stub.token_requests[0].content.decode())["refresh_token"] == ["R"]

    [api_request] = stub.api_requests
    assert api_request.headers["authorization"] == "Bearer NEW"
    assert api_request.url.path == "/v2/usercollection/daily_sleep"
    assert dict(api_request.url.params) == {"start_date": "2024-01-01"}

    stored = await store.get_token("oura", "daniel")
    assert stored.access_token == "NEW"
    assert stored.expires_at == int(clock.now) + 3600


@pytest.mark.anyio
async def test_fresh_token_is_forwarded_without_refresh(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura",
        account="default",
        refresh_token="R",
        access_token="CURRENT",
        expires_at=int(clock.now) + 3600,
    )
    stub = UpstreamStub()
    forwarder = _forwarder(store, registry, stub, clock)

    await forwarder.forward(ProxyRequest(provider="oura", path="v2/me", method="GET"))

    assert stub.token_requests == []
    assert stub.api_requests[0].headers["authorization"] == "Bearer CURRENT"


@pytest.mark.anyio
async def test_unknown_provider_never_touches_the_store(
    raw_store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    # The store was never initialised, so any query against it would fail.
    stub = UpstreamStub()
    forwarder = _forwarder(raw_store, registry, stub, clock)

    with pytest.raises(UnknownProvider):
        await forwarder.forward(ProxyRequest(provider="nope", path="x", method="GET"))

    assert stub.transport.requests == []


@pytest.mark.anyio
async def test_missing_connection_is_reported(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    stub = UpstreamStub()
    forwarder = _forwarder(store, registry, stub, clock)

    with pytest.raises(NoConnection):
        await forwarder.forward(
            ProxyRequest(provider="oura", path="x", method="GET", query_params=[("account", "ghost")])
        )
    assert stub.transport.requests == []


@pytest.mark.anyio
async def test_refresh_rejection_keeps_old_token_and_skips_upstream(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura",
        account="default",
        refresh_token="R",
        access_token="OLD",
        expires_at=int(clock.now) - 100,
    )
    stub = UpstreamStub(token_status=400)
    forwarder = _forwarder(store, registry, stub, clock)

    with pytest.raises(TokenRefreshFailed):
        await forwarder.forward(ProxyRequest(provider="oura", path="x", method="GET"))

    assert stub.api_requests == []
    stored = await store.get_token("oura", "default")
    assert stored.access_token == "OLD"
    assert stored.expires_at == int(clock.now) - 100


@pytest.mark.anyio
async def test_network_failure_becomes_upstream_error(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura", account="default", refresh_token="R", access_token="A",
        expires_at=int(clock.now) + 3600,
    )

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    transport = httpx.MockTransport(handler)
    lifecycle = TokenLifecycleService(store, oauth_client_for(transport), clock=clock)
    forwarder = ProxyForwarder(registry, lifecycle, httpx.AsyncClient(transport=transport))

    with pytest.raises(UpstreamError):
        await forwarder.forward(ProxyRequest(provider="oura", path="x", method="GET"))


@pytest.mark.anyio
async def test_upstream_errors_pass_through_unchanged(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura", account="default", refresh_token="R", access_token="A",
        expires_at=int(clock.now) + 3600,
    )
    stub = UpstreamStub(
        api_status=429,
        api_headers={
            "content-type": "application/json",
            "retry-after": "30",
            "connection": "keep-alive",
        },
        api_body=b'{"error": "rate_limited"}',
    )
    forwarder = _forwarder(store, registry, stub, clock)

    response = await forwarder.forward(ProxyRequest(provider="oura", path="x", method="GET"))

    assert response.status_code == 429
    assert response.content == b'{"error": "rate_limited"}'
    names = {name.lower() for name, _ in response.headers}
    assert "retry-after" in names
    assert "connection" not in names
    assert "content-length" not in names


@pytest.mark.anyio
async def test_body_is_forwarded_for_write_methods_only(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura", account="default", refresh_token="R", access_token="A",
        expires_at=int(clock.now) + 3600,
    )
    stub = UpstreamStub()
    forwarder = _forwarder(store, registry, stub, clock)
    headers = [("Content-Type", "application/json"), ("Authorization", "Bearer caller-key")]

    await forwarder.forward(
        ProxyRequest(provider="oura", path="items", method="POST", headers=headers, body=b'{"a": 1}')
    )
    await forwarder.forward(
        ProxyRequest(provider="oura", path="items", method="GET", headers=headers, body=b"ignored")
    )

    post, get = stub.api_requests
    assert post.method == "POST"
    assert post.content == b'{"a": 1}'
    assert post.headers["authorization"] == "Bearer A"
    assert post.headers["content-type"] == "application/json"
    assert get.content == b""


def test_build_upstream_url_strips_every_account_param() -> None:
    url = build_upstream_url(
        "https://api.example.com",
        "/v1/items",
        [("account", "a"), ("q", "x y"), ("account", "b"), ("tag", "1"), ("tag", "2")],
    )

    assert url == "https://api.example.com/v1/items?q=x+y&tag=1&tag=2"
    assert build_upstream_url("https://api.example.com", "v1", [("account", "a")]) == (
        "https://api.example.com/v1"
    )


def test_build_forward_headers_drops_hop_by_hop_and_replaces_authorization() -> None:
    headers = build_forward_headers(
        [
            ("Host", "localhost:3001"),
            ("Connection", "keep-alive"),
            ("Authorization", "Bearer caller-key"),
            ("Proxy-Authorization", "Basic abc"),
            ("Upgrade", "h2c"),
            ("Accept", "application/json"),
            ("X-Custom", "one"),
            ("x-custom", "two"),
        ],
        "TOKEN",
    )

    assert headers == {
        "accept": "application/json",
        "x-custom": "one, two",
        "authorization": "Bearer TOKEN",
    }


def test_empty_account_param_counts_as_omitted() -> None:
    request = ProxyRequest(provider="oura", path="x", method="GET", query_params=[("account", "")])

    assert request.account is None


def test_build_upstream_url_quotes_decoded_path_segments() -> None:
    url = build_upstream_url(
        "https://api.example.com", "files/a?b#c d/100%/x:y@z", [("q", "1")]
    )

    assert url == "https://api.example.com/files/a%3Fb%23c%20d/100%25/x:y@z?q=1"


def test_build_forward_headers_leaves_encoding_and_length_to_httpx() -> None:
    headers = build_forward_headers(
        [
            ("Accept-Encoding", "gzip, br, zstd"),
            ("Content-Length", "999"),
            ("Accept", "application/json"),
        ],
        "TOKEN",
    )

    assert headers == {"accept": "application/json", "authorization": "Bearer TOKEN"}


@pytest.mark.anyio
async def test_compressed_upstream_body_is_returned_decoded(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura", account="default", refresh_token="R", access_token="A",
        expires_at=int(clock.now) + 3600,
    )
    stub = UpstreamStub(
        api_headers={"content-type": "application/json", "content-encoding": "gzip"},
        api_body=gzip.compress(b'{"data": [1]}'),
    )
    forwarder = _forwarder(store, registry, stub, clock)

    response = await forwarder.forward(
        ProxyRequest(
            provider="oura",
            path="x",
            method="GET",
            headers=[("Accept-Encoding", "x-unsupported-codec")],
        )
    )

    [api_request] = stub.api_requests
    assert "x-unsupported-codec" not in api_request.headers.get("accept-encoding", "")
    assert response.content == b'{"data": [1]}'
    names = {name.lower() for name, _ in response.headers}
    assert "content-encoding" not in names


@pytest.mark.anyio
async def test_caller_content_length_is_not_forwarded(
    store: SQLiteTokenStore, registry: ProviderRegistry, clock: FakeClock
) -> None:
    await store.store_token(
        provider="oura", account="default", refresh_token="R", access_token="A",
        expires_at=int(clock.now) + 3600,
    )
    stub = UpstreamStub()
    forwarder = _forwarder(store, registry, stub, clock)

    await forwarder.forward(
        ProxyRequest(
            provider="oura", path="items/1", method="DELETE",
            headers=[("Content-Length", "12")], body=b'{"force": 1}',
        )
    )
    await forwarder.forward(
        ProxyRequest(
            provider="oura", path="items", method="POST",
            headers=[("Content-Length", "999")], body=b'{"a": 1}',
        )
    )

    delete, post = stub.api_requests
    assert delete.content == b""
    assert delete.headers.get("content-length") in (None, "0")
    assert post.headers["content-length"] == str(len(b'{"a": 1}'))
