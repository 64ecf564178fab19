"""
Forward inbound requests to a provider API with a fresh bearer token attached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlencode

import httpx

from tokenrelay.core.errors import UnknownProvider, UpstreamError
from tokenrelay.core.providers import ProviderRegistry
from tokenrelay.services.token_lifecycle import TokenLifecycleService

logger = logging.getLogger(__name__)

ACCOUNT_QUERY_PARAM = "account"

# Not forwarded from the caller to the provider; authorization is replaced.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "authorization",
    }
)

# Not returned to the caller; httpx has already decoded the body.
SKIP_RESPONSE_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "transfer-encoding",
        "content-encoding",
        "content-length",
    }
)

# Set by httpx for the outbound request; the relayed body is returned decoded.
SKIP_REQUEST_HEADERS = frozenset({"accept-encoding", "content-length"})

# Characters kept literal inside a path segment (RFC 3986 pchar).
PATH_SEGMENT_SAFE = "!$&'()*+,;=:@"

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass
class ProxyRequest:
    """An inbound request addressed to ``/proxy/{provider}/{path}``."""

    provider: str
    path: str
    method: str
    headers: Sequence[Tuple[str, str]] = field(default_factory=list)
    query_params: Sequence[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    @property
    def account(self) -> Optional[str]:
        for key, value in self.query_params:
            if key == ACCOUNT_QUERY_PARAM and value:
                return value
        return None


@dataclass
class ProxyResponse:
    status_code: int
    headers: List[Tuple[str, str]]
    content: bytes


def build_upstream_url(
    base_url: str, path: str, query_params: Iterable[Tuple[str, str]]
) -> str:
    """
    Join ``base_url`` and ``path``; every ``account`` parameter is dropped.

    ``path`` arrives percent-decoded, so each segment is quoted again before it
    is sent upstream.
    """
    segments = path.lstrip("/").split("/")
    quoted = "/".join(quote(segment, safe=PATH_SEGMENT_SAFE) for segment in segments)
    url = f"{base_url}/{quoted}"
    remaining = [(k, v) for k, v in query_params if k != ACCOUNT_QUERY_PARAM]
    if remaining:
        url = f"{url}?{urlencode(remaining)}"
    return url


def build_forward_headers(
    headers: Iterable[Tuple[str, str]], access_token: str
) -> dict[str, str]:
    forwarded: dict[str, str] = {}
    for name, value in headers:
        key = name.lower()
        if key in HOP_BY_HOP_HEADERS or key in SKIP_REQUEST_HEADERS:
            continue
        forwarded[key] = f"{forwarded[key]}, {value}" if key in forwarded else value
    forwarded["authorization"] = f"Bearer {access_token}"
    return forwarded


class ProxyForwarder:
    """Resolve a connection, make sure its token is valid, and relay one request."""

    def __init__(
        self,
        registry: ProviderRegistry,
        lifecycle: TokenLifecycleService,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._registry = registry
        self._lifecycle = lifecycle
        self._http = http_client

    async def forward(self, request: ProxyRequest) -> ProxyResponse:
        provider = self._registry.get(request.provider)
        if provider is None:
            raise UnknownProvider(request.provider)

        resolved = await self._lifecycle.resolve_token(request.provider, request.account)
        record = await self._lifecycle.ensure_fresh(resolved.record, provider)

        upstream_url = build_upstream_url(
            provider.base_url, request.path, request.query_params
        )
        headers = build_forward_headers(request.headers, record.access_token or "")
        method = request.method.upper()
        content = request.body if method in BODY_METHODS and request.body else None

        try:
            upstream = await self._http.request(
                method,
                upstream_url,
                headers=headers,
                content=content,
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            logger.error(
                "Upstream request failed for %s: %s",
                request.provider,
                type(exc).__name__,
                extra={"provider": request.provider, "account": resolved.account},
            )
            raise UpstreamError(request.provider) from exc

        logger.debug(
            "Proxied %s %s/%s -> %s",
            method,
            request.provider,
            request.path,
            upstream.status_code,
        )
        response_headers = [
            (name, value)
            for name, value in upstream.headers.multi_items()
            if name.lower() not in SKIP_RESPONSE_HEADERS
        ]
        return ProxyResponse(
            status_code=upstream.status_code,
            headers=response_headers,
            content=upstream.content,
        )


__all__ = [
    "ACCOUNT_QUERY_PARAM",
    "HOP_BY_HOP_HEADERS",
    "ProxyForwarder",
    "ProxyRequest",
    "ProxyResponse",
    "SKIP_REQUEST_HEADERS",
    "SKIP_RESPONSE_HEADERS",
    "build_forward_headers",
    "build_upstream_url",
]
