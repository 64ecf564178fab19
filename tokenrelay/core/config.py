"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the refresh scheduler and
the helper scripts share a consistent configuration surface.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _ENV_CONFIG

    encryption_key: Optional[str] = Field(
        None,
        alias="ENCRYPTION_KEY",
        description="64 hex characters (32 bytes) used for AES-256-GCM at rest.",
    )
    api_key: Optional[str] = Field(
        None,
        alias="API_KEY",
        description="Bearer credential callers present to reach protected routes.",
    )


class StorageSettings(BaseSettings):
    """Where the token database lives."""

    model_config = _ENV_CONFIG

    db_path: str = Field("./data/tokenrelay.db", alias="DB_PATH")


class ProviderSettings(BaseSettings):
    """Location of the provider registry file."""

    model_config = _ENV_CONFIG

    providers_file: str = Field("providers.yml", alias="PROVIDERS_FILE")


class ProxySettings(BaseSettings):
    """Transport settings for upstream and token endpoint calls."""

    model_config = _ENV_CONFIG

    timeout_seconds: float = Field(30.0, alias="PROXY_TIMEOUT_SECONDS")
    oauth_timeout_seconds: float = Field(10.0, alias="OAUTH_TIMEOUT_SECONDS")


class HttpSettings(BaseSettings):
    """Cross-origin access and per-client request limits for inbound traffic."""

    model_config = _ENV_CONFIG

    cors_origin: Optional[str] = Field(
        None,
        alias="CORS_ORIGIN",
        description="Comma-separated browser origins allowed to call the relay.",
    )
    rate_limit_per_minute: int = Field(
        100,
        alias="RATE_LIMIT_PER_MINUTE",
        description="Requests per minute allowed from one client address; 0 disables.",
    )

    @field_validator("rate_limit_per_minute")
    @classmethod
    def _non_negative_limit(cls, value: int) -> int:
        if value < 0:
            raise ValueError("RATE_LIMIT_PER_MINUTE must not be negative.")
        return value

    @property
    def cors_origins(self) -> list[str]:
        if not self.cors_origin:
            return []
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]


class RefreshSettings(BaseSettings):
    """Background refresh sweep configuration."""

    model_config = _ENV_CONFIG

    enabled: bool = Field(True, alias="REFRESH_ENABLED")
    interval_seconds: float = Field(300.0, alias="REFRESH_INTERVAL_SECONDS")
    threshold_seconds: int = Field(600, alias="REFRESH_THRESHOLD_SECONDS")

    @field_validator("interval_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("REFRESH_INTERVAL_SECONDS must be positive.")
        return value


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = _ENV_CONFIG

    environment: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="APP_LOG_LEVEL")
    base_url: AnyHttpUrl = Field(
        "http://localhost:3001",
        alias="BASE_URL",
        description="Public URL of this service, used to build OAuth redirect URIs.",
    )
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting browsers after an OAuth callback.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)

    @property
    def public_base_url(self) -> str:
        """Base URL without a trailing slash."""
        return str(self.base_url).rstrip("/")


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "HttpSettings",
    "ProviderSettings",
    "ProxySettings",
    "RefreshSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
