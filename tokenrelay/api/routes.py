"""
FastAPI routes for the token relay.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from tokenrelay import __version__
from tokenrelay.dependencies import (
    get_app_settings,
    get_oauth_flow_service,
    get_provider_registry,
    get_proxy_forwarder,
    get_token_store,
    require_api_key,
)
from tokenrelay.schemas import (
    ConnectionStatus,
    ConnectionSummary,
    OAuthCallbackResult,
    OAuthStartPayload,
    OAuthStartResponse,
)
from tokenrelay.services.proxy import ProxyRequest

router = APIRouter()
logger = logging.getLogger(__name__)

ApiKey = Depends(require_api_key)

_SLUG = r"^[A-Za-z0-9_-]+$"
PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok", "version": __version__}


@router.get("/status", status_code=HTTPStatus.OK, dependencies=[ApiKey])
async def service_status(
    store: Annotated[Any, Depends(get_token_store)],
) -> dict:
    """Summarize every stored connection."""
    connections = await store.list_connections()
    return {
        "status": "ok",
        "version": __version__,
        "connections": [
            ConnectionStatus.from_connection(conn).model_dump() for conn in connections
        ],
    }


@router.get("/providers", status_code=HTTPStatus.OK, dependencies=[ApiKey])
async def list_providers(
    registry: Annotated[Any, Depends(get_provider_registry)],
) -> dict:
    return {"providers": registry.list_providers()}


@router.get("/connections", status_code=HTTPStatus.OK, dependencies=[ApiKey])
async def list_connections(
    store: Annotated[Any, Depends(get_token_store)],
) -> dict:
    """List stored connections without refresh tokens."""
    connections = await store.list_connections()
    return {
        "connections": [
            ConnectionSummary.from_connection(conn).model_dump() for conn in connections
        ]
    }


@router.delete(
    "/connections/{provider}/{account}",
    status_code=HTTPStatus.OK,
    dependencies=[ApiKey],
)
async def delete_connection(
    store: Annotated[Any, Depends(get_token_store)],
    provider: str = Path(..., min_length=1, max_length=64, pattern=_SLUG),
    account: str = Path(..., min_length=1, max_length=128, pattern=_SLUG),
) -> dict:
    """Revoke and delete a stored OAuth connection."""
    await store.delete_token(provider, account)
    logger.info("Connection deleted", extra={"provider": provider, "account": account})
    return {
        "message": f"Connection {provider}/{account} revoked and deleted.",
        "provider": provider,
        "account": account,
    }


@router.post(
    "/auth/{provider}/start",
    response_model=OAuthStartResponse,
    status_code=HTTPStatus.OK,
    dependencies=[ApiKey],
)
async def start_oauth_flow(
    provider: str,
    flow: Annotated[Any, Depends(get_oauth_flow_service)],
    payload: Optional[OAuthStartPayload] = Body(default=None),
) -> OAuthStartResponse:
    """Kick off the OAuth flow by persisting a state token and building the consent URL."""
    account = payload.account if payload else None
    started = await flow.start(provider, account)
    return OAuthStartResponse(
        auth_url=started.auth_url,
        redirect_uri=started.redirect_uri,
        state=started.state,
        expires_in=started.expires_in,
    )


@router.get("/auth/{provider}/callback", status_code=HTTPStatus.OK)
async def handle_oauth_callback(
    provider: str,
    request: Request,
    flow: Annotated[Any, Depends(get_oauth_flow_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
) -> Response:
    """Complete the OAuth exchange and store the resulting tokens."""
    binding = await flow.complete(provider, code=code, state=state, error=error)
    result = OAuthCallbackResult(provider=binding.provider, account=binding.account)

    accept_header = request.headers.get("accept", "")
    wants_html = "text/html" in accept_header.lower()
    if settings.frontend_base_url and wants_html:
        return RedirectResponse(
            url=str(settings.frontend_base_url),
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )
    return JSONResponse(content=result.model_dump())


@router.api_route(
    "/proxy/{provider}/{path:path}",
    methods=PROXY_METHODS,
    dependencies=[ApiKey],
)
async def proxy_request(
    provider: str,
    path: str,
    request: Request,
    forwarder: Annotated[Any, Depends(get_proxy_forwarder)],
) -> Response:
    """Forward the request to the provider API with a fresh access token."""
    proxied = await forwarder.forward(
        ProxyRequest(
            provider=provider,
            path=path,
            method=request.method,
            headers=request.headers.items(),
            query_params=request.query_params.multi_items(),
            body=await request.body(),
        )
    )
    response = Response(content=proxied.content, status_code=proxied.status_code)
    for name, value in proxied.headers:
        response.headers.append(name, value)
    return response


__all__ = ["router"]
