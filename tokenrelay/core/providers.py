"""
Provider registry: loads ``providers.yml`` and resolves ``${ENV_VAR}`` placeholders.

:func:`build_registry` is pure; it takes the parsed YAML and an environment
snapshot and reports, per slug, either a validated :class:`ProviderConfig` or
the reason it was skipped. Providers whose credentials are not configured are
skipped rather than treated as errors, so the service runs with whatever
subset is available.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


class ProviderConfig(BaseModel):
    """Validated configuration for one OAuth provider."""

    slug: str
    display_name: str
    base_url: str
    auth_url: str
    token_url: str
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1, repr=False)
    scopes: List[str] = Field(default_factory=list)
    extra_params: Dict[str, str] = Field(default_factory=dict)
    token_expiry_buffer_seconds: Optional[int] = Field(None, ge=0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("extra_params", mode="before")
    @classmethod
    def _stringify_params(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return {str(key): str(item) for key, item in value.items()}
        return value


class MissingEnvironmentVariable(KeyError):
    """Raised while resolving a placeholder whose variable is unset."""


@dataclass
class ProviderRegistry:
    """Outcome of loading the registry: usable providers plus skipped slugs."""

    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)

    def get(self, slug: str) -> Optional[ProviderConfig]:
        return self.providers.get(slug)

    def __contains__(self, slug: object) -> bool:
        return slug in self.providers

    def list_providers(self) -> List[Dict[str, str]]:
        return [
            {
                "slug": slug,
                "display_name": cfg.display_name,
                "base_url": cfg.base_url,
            }
            for slug, cfg in self.providers.items()
        ]


def resolve_placeholders(value: str, environ: Mapping[str, str]) -> str:
    """Substitute ``${NAME}`` with ``environ[NAME]``; empty values count as missing."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        resolved = environ.get(name)
        if not resolved:
            raise MissingEnvironmentVariable(name)
        return resolved

    return _PLACEHOLDER.sub(_replace, value)


def _resolve_entry(entry: Any, environ: Mapping[str, str]) -> Any:
    if isinstance(entry, str):
        return resolve_placeholders(entry, environ)
    if isinstance(entry, list):
        return [_resolve_entry(item, environ) for item in entry]
    if isinstance(entry, dict):
        return {key: _resolve_entry(item, environ) for key, item in entry.items()}
    return entry


def build_registry(raw: Mapping[str, Any], environ: Mapping[str, str]) -> ProviderRegistry:
    """Validate every provider entry of a parsed ``providers.yml`` document."""
    registry = ProviderRegistry()
    entries = (raw or {}).get("providers") or {}
    if not isinstance(entries, Mapping):
        raise ValueError("providers.yml must contain a 'providers' mapping.")

    for slug, entry in entries.items():
        if not isinstance(entry, Mapping):
            registry.skipped[slug] = "entry is not a mapping"
            continue
        try:
            resolved = _resolve_entry(dict(entry), environ)
        except MissingEnvironmentVariable as exc:
            registry.skipped[slug] = f"missing environment variable {exc.args[0]}"
            continue
        try:
            registry.providers[slug] = ProviderConfig.model_validate(
                {**resolved, "slug": slug}
            )
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            registry.skipped[slug] = f"invalid fields: {', '.join(fields)}"
    return registry


def load_registry(
    path: str | Path, environ: Optional[Mapping[str, str]] = None
) -> ProviderRegistry:
    """Read ``providers.yml`` from disk and build the registry."""
    file_path = Path(path)
    with file_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    registry = build_registry(raw, os.environ if environ is None else environ)
    for slug, reason in registry.skipped.items():
        logger.warning("Skipping provider %s: %s", slug, reason)
    logger.info(
        "Loaded provider registry",
        extra={"providers": sorted(registry.providers), "path": str(file_path)},
    )
    return registry


__all__ = [
    "MissingEnvironmentVariable",
    "ProviderConfig",
    "ProviderRegistry",
    "build_registry",
    "load_registry",
    "resolve_placeholders",
]
