"""Pytest configuration shared across the suite."""

from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from pathlib import Path

import pytest

from _fakes import TEST_KEY, FakeClock, make_provider
from tokenrelay.clients.sqlite_store import SQLiteTokenStore
from tokenrelay.core.providers import ProviderConfig, ProviderRegistry
from tokenrelay.services.token_cipher import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(key_hex=TEST_KEY)


@pytest.fixture
def raw_store(tmp_path: Path, cipher: TokenCipherService, clock: FakeClock) -> SQLiteTokenStore:
    """A store whose schema has not been created yet."""
    return SQLiteTokenStore(str(tmp_path / "data" / "tokens.db"), cipher, clock=clock)


@pytest.fixture
async def store(raw_store: SQLiteTokenStore) -> SQLiteTokenStore:
    await raw_store.init()
    return raw_store


@pytest.fixture
def provider() -> ProviderConfig:
    return make_provider()


@pytest.fixture
def registry(provider: ProviderConfig) -> ProviderRegistry:
    return ProviderRegistry(providers={provider.slug: provider})
