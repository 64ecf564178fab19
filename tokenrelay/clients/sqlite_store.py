"""SQLite-backed persistence for OAuth connections and handshake state."""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

import aiosqlite

from tokenrelay.core.errors import StorageUnavailable
from tokenrelay.models.oauth import (
    DEFAULT_ACCOUNT,
    Connection,
    OAuthStateBinding,
    StoredToken,
    connection_id,
)

if TYPE_CHECKING:
    from tokenrelay.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_SECONDS = 600

_SCHEMA = """
CREATE TABLE IF NOT EXISTS connections (
    id TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    account TEXT NOT NULL DEFAULT 'default',
    refresh_token_encrypted TEXT NOT NULL,
    access_token TEXT,
    expires_at INTEGER,
    scopes TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    UNIQUE(provider, account)
);

CREATE TABLE IF NOT EXISTS oauth_states (
    state TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    account TEXT NOT NULL,
    created_at INTEGER NOT NULL
);
"""


class SQLiteTokenStore:
    """
    Token store keyed by (provider, account).

    Refresh tokens are encrypted with :class:`TokenCipherService` before they
    are written and decrypted when records are read back. Every statement runs
    in autocommit mode, so single-statement upserts are atomic; state
    consumption uses an explicit ``BEGIN IMMEDIATE`` transaction.
    """

    def __init__(
        self,
        db_path: str,
        cipher: TokenCipherService,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self._db_path, isolation_level=None) as conn:
                conn.row_factory = aiosqlite.Row
                yield conn
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable(f"Token store unavailable: {exc}") from exc

    async def init(self) -> None:
        """Create the data directory and schema; safe to call repeatedly."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot create data directory: {exc}") from exc
        async with self._connect() as conn:
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.executescript(_SCHEMA)

    async def store_token(
        self,
        *,
        provider: str,
        account: str = DEFAULT_ACCOUNT,
        refresh_token: str,
        access_token: Optional[str] = None,
        expires_at: Optional[int] = None,
        scopes: Optional[str] = None,
    ) -> None:
        """Insert or replace the token for (provider, account)."""
        encrypted = self._cipher.encrypt(refresh_token)
        now = self._now()
        async with self._connect() as conn:
            await conn.execute(
                """
                INSERT INTO connections (
                    id, provider, account, refresh_token_encrypted,
                    access_token, expires_at, scopes, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(provider, account) DO UPDATE SET
                    refresh_token_encrypted = excluded.refresh_token_encrypted,
                    access_token = excluded.access_token,
                    expires_at = excluded.expires_at,
                    scopes = excluded.scopes,
                    updated_at = excluded.updated_at
                """,
                (
                    connection_id(provider, account),
                    provider,
                    account,
                    encrypted,
                    access_token,
                    expires_at,
                    scopes,
                    now,
                    now,
                ),
            )

    async def get_token(self, provider: str, account: str) -> Optional[StoredToken]:
        async with self._connect() as conn:
            async with conn.execute(
                "SELECT * FROM connections WHERE provider = ? AND account = ?",
                (provider, account),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_token(row)

    async def get_default_token(self, provider: str) -> Optional[StoredToken]:
        """
        Resolve a token without an explicit account.

        One connection is returned whatever its name; with several, only the
        one named ``default`` is returned, otherwise ``None``.
        """
        async with self._connect() as conn:
            async with conn.execute(
                "SELECT * FROM connections WHERE provider = ? ORDER BY account",
                (provider,),
            ) as cursor:
                rows = await cursor.fetchall()
        if not rows:
            return None
        if len(rows) == 1:
            return self._row_to_token(rows[0])
        for row in rows:
            if row["account"] == DEFAULT_ACCOUNT:
                return self._row_to_token(row)
        return None

    async def update_access_token(
        self, provider: str, account: str, access_token: str, expires_at: int
    ) -> None:
        async with self._connect() as conn:
            await conn.execute(
                """
                UPDATE connections
                SET access_token = ?, expires_at = ?, updated_at = ?
                WHERE provider = ? AND account = ?
                """,
                (access_token, expires_at, self._now(), provider, account),
            )

    async def delete_token(self, provider: str, account: str) -> None:
        async with self._connect() as conn:
            await conn.execute(
                "DELETE FROM connections WHERE provider = ? AND account = ?",
                (provider, account),
            )

    async def list_connections(self) -> list[Connection]:
        async with self._connect() as conn:
            async with conn.execute(
                """
                SELECT id, provider, account, access_token, expires_at, scopes,
                       created_at, updated_at
                FROM connections ORDER BY provider, account
                """
            ) as cursor:
                rows = await cursor.fetchall()
        return [Connection(**dict(row)) for row in rows]

    async def get_tokens_needing_refresh(
        self, threshold_seconds: int
    ) -> list[StoredToken]:
        """Tokens with no expiry or expiring before ``now + threshold_seconds``."""
        tokens, _ = await self.get_refresh_candidates(threshold_seconds)
        return tokens

    async def get_refresh_candidates(
        self, threshold_seconds: int
    ) -> tuple[list[StoredToken], list[str]]:
        """
        Split the rows due for refresh into readable tokens and unreadable rows.

        A row whose refresh token no longer decrypts is reported by its
        ``provider/account`` label instead of aborting the whole read.
        """
        from tokenrelay.services.token_cipher import CipherError

        cutoff = self._now() + threshold_seconds
        async with self._connect() as conn:
            async with conn.execute(
                """
                SELECT * FROM connections
                WHERE expires_at IS NULL OR expires_at < ?
                ORDER BY provider, account
                """,
                (cutoff,),
            ) as cursor:
                rows = await cursor.fetchall()

        tokens: list[StoredToken] = []
        unreadable: list[str] = []
        for row in rows:
            try:
                tokens.append(self._row_to_token(row))
            except CipherError as exc:
                logger.error(
                    "Stored refresh token could not be decrypted: %s",
                    exc.kind,
                    extra={"provider": row["provider"], "account": row["account"]},
                )
                unreadable.append(f"{row['provider']}/{row['account']}")
        return tokens, unreadable

    async def save_oauth_state(self, state: str, provider: str, account: str) -> None:
        async with self._connect() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO oauth_states (state, provider, account, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (state, provider, account, self._now()),
            )

    async def consume_oauth_state(self, state: str) -> Optional[OAuthStateBinding]:
        """Read and delete a handshake state; expired states resolve to None."""
        async with self._connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                async with conn.execute(
                    "SELECT provider, account, created_at FROM oauth_states WHERE state = ?",
                    (state,),
                ) as cursor:
                    row = await cursor.fetchone()
                if row is not None:
                    await conn.execute(
                        "DELETE FROM oauth_states WHERE state = ?", (state,)
                    )
                await conn.execute("COMMIT")
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
        if row is None:
            return None
        if row["created_at"] < self._now() - OAUTH_STATE_TTL_SECONDS:
            return None
        return OAuthStateBinding(provider=row["provider"], account=row["account"])

    async def clean_oauth_states(self) -> int:
        """Delete handshake states older than the TTL; returns the number removed."""
        cutoff = self._now() - OAUTH_STATE_TTL_SECONDS
        async with self._connect() as conn:
            cursor = await conn.execute(
                "DELETE FROM oauth_states WHERE created_at < ?", (cutoff,)
            )
            removed = cursor.rowcount
            await cursor.close()
        return removed

    def _row_to_token(self, row: aiosqlite.Row) -> StoredToken:
        return StoredToken(
            provider=row["provider"],
            account=row["account"],
            refresh_token=self._cipher.decrypt(row["refresh_token_encrypted"]),
            access_token=row["access_token"],
            expires_at=row["expires_at"],
            scopes=row["scopes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


__all__ = ["OAUTH_STATE_TTL_SECONDS", "SQLiteTokenStore"]
