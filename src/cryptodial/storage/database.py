"""Async SQLite database layer for Cryptodial.

Uses ``aiosqlite`` for non-blocking database access with WAL mode and
dictionary-style row results. Every driver error is re-raised as
:class:`~cryptodial.errors.PersistenceError`.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

from cryptodial.errors import PersistenceError

MEMORY = ":memory:"


class Database:
    """Thin async wrapper around an SQLite database.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file, or ``":memory:"``.
        The file (and any intermediate directories) will be created
        automatically on :meth:`connect` if they do not already exist.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        try:
            if self.db_path != MEMORY:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self.db_path)

            # Enable WAL mode for better concurrent read performance.
            await self._conn.execute("PRAGMA journal_mode=WAL;")

            # Return rows as ``sqlite3.Row`` so we can convert to dicts easily.
            self._conn.row_factory = sqlite3.Row

            await self._migrate()
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Could not open database {self.db_path}: {exc}") from exc

    async def close(self) -> None:
        """Close the database connection gracefully."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Database not connected. Call connect() first.")
        return self._conn

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a single SQL statement and commit.

        Returns the number of affected rows. A failed statement is rolled
        back so nothing is partially applied.
        """
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            await conn.commit()
            return cursor.rowcount
        except sqlite3.Error as exc:
            await conn.rollback()
            raise PersistenceError(f"Write failed: {exc}") from exc

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        """Execute a query and return the first row as a dict, or ``None``."""
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            row = await cursor.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Query failed: {exc}") from exc
        if row is None:
            return None
        return dict(row)

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        """Execute a query and return all rows as a list of dicts."""
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Query failed: {exc}") from exc
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def _migrate(self) -> None:
        """Create all required tables if they do not already exist."""
        assert self._conn is not None

        await self._conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS wallets (
                wallet_id TEXT PRIMARY KEY,
                chain_id TEXT NOT NULL,
                address TEXT NOT NULL,
                encrypted_private_key TEXT NOT NULL,
                pin_hash TEXT NOT NULL,
                phone_number TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_wallets_phone ON wallets(phone_number);

            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                sender_wallet_id TEXT NOT NULL,
                recipient_wallet_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                chain_id TEXT NOT NULL,
                status TEXT NOT NULL,
                tx_hash TEXT,
                network_fee TEXT,
                block_number INTEGER,
                error TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_sender
                ON transactions(sender_wallet_id);
            CREATE INDEX IF NOT EXISTS idx_transactions_recipient
                ON transactions(recipient_wallet_id);

            CREATE TABLE IF NOT EXISTS sessions (
                sessionId TEXT PRIMARY KEY,
                phoneNumber TEXT NOT NULL,
                state TEXT NOT NULL,
                walletId TEXT,
                tempPin TEXT,
                tempEncryptedKey TEXT,
                tempBlockchain TEXT,
                tempData TEXT,
                createdAt INTEGER NOT NULL,
                expiresAt INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_expiry ON sessions(expiresAt);
            """
        )
        await self._conn.commit()


# ------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------

def get_database(db_path: Path | str) -> Database:
    """Return a :class:`Database` instance for *db_path*.

    The caller is responsible for calling :meth:`Database.connect` before
    using the returned instance.
    """
    return Database(db_path)
