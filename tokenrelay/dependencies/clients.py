"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Each factory builds its object once per process; the application lifespan
initializes and closes the ones that own resources.
"""

from functools import lru_cache

import httpx

from tokenrelay.clients import OAuthProviderClient, SQLiteTokenStore
from tokenrelay.core.config import get_settings
from tokenrelay.core.providers import ProviderRegistry, load_registry
from tokenrelay.services import (
    OAuthFlowService,
    ProxyForwarder,
    RefreshScheduler,
    TokenCipherService,
    TokenLifecycleService,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_provider_registry() -> ProviderRegistry:
    """Load providers.yml once, resolving credentials from the environment."""
    settings = _settings()
    return load_registry(settings.providers.providers_file)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    return TokenCipherService(key_hex=settings.security.encryption_key)


@lru_cache()
def get_token_store() -> SQLiteTokenStore:
    """Provide shared SQLite token store."""
    settings = _settings()
    return SQLiteTokenStore(settings.storage.db_path, get_token_cipher_service())


@lru_cache()
def get_oauth_http_client() -> httpx.AsyncClient:
    """HTTP client used for provider token endpoints."""
    settings = _settings()
    return httpx.AsyncClient(timeout=settings.proxy.oauth_timeout_seconds)


@lru_cache()
def get_upstream_http_client() -> httpx.AsyncClient:
    """HTTP client used for proxied upstream API calls."""
    settings = _settings()
    return httpx.AsyncClient(timeout=settings.proxy.timeout_seconds)


@lru_cache()
def get_oauth_client() -> OAuthProviderClient:
    return OAuthProviderClient(get_oauth_http_client())


@lru_cache()
def get_token_lifecycle_service() -> TokenLifecycleService:
    """Provide helper for resolving and refreshing stored tokens."""
    return TokenLifecycleService(get_token_store(), get_oauth_client())


@lru_cache()
def get_proxy_forwarder() -> ProxyForwarder:
    return ProxyForwarder(
        registry=get_provider_registry(),
        lifecycle=get_token_lifecycle_service(),
        http_client=get_upstream_http_client(),
    )


@lru_cache()
def get_oauth_flow_service() -> OAuthFlowService:
    settings = _settings()
    return OAuthFlowService(
        store=get_token_store(),
        registry=get_provider_registry(),
        oauth_client=get_oauth_client(),
        base_url=settings.public_base_url,
    )


@lru_cache()
def get_refresh_scheduler() -> RefreshScheduler:
    settings = _settings()
    return RefreshScheduler(
        store=get_token_store(),
        registry=get_provider_registry(),
        lifecycle=get_token_lifecycle_service(),
        interval_seconds=settings.refresh.interval_seconds,
        threshold_seconds=settings.refresh.threshold_seconds,
    )


__all__ = [
    "get_oauth_client",
    "get_oauth_flow_service",
    "get_oauth_http_client",
    "get_provider_registry",
    "get_proxy_forwarder",
    "get_refresh_scheduler",
    "get_token_cipher_service",
    "get_token_lifecycle_service",
    "get_token_store",
    "get_upstream_http_client",
]
