"""Expose dependency helpers for FastAPI routers."""

from .auth import require_api_key
from .clients import (
    get_oauth_client,
    get_oauth_flow_service,
    get_oauth_http_client,
    get_provider_registry,
    get_proxy_forwarder,
    get_refresh_scheduler,
    get_token_cipher_service,
    get_token_lifecycle_service,
    get_token_store,
    get_upstream_http_client,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
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
    "require_api_key",
]
