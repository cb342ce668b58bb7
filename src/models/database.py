"""Async SQLite database layer using aiosqlite.

Provides connection management, automatic schema migrations, and convenience
helpers for common query patterns.  The schema backs the reference
collaborators in ``src.models.store``: tenants with a credit balance, their
product catalog, conversation messages, orders and the credit usage log.
The ``Database`` class supports the async context-manager protocol.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import aiosqlite

from src.utils.logger import get_logger

log = get_logger(__name__, component="database")


class Database:
    """Thin async wrapper around an aiosqlite connection.

    Parameters
    ----------
    db_path:
        File-system path to the SQLite database, or ``":memory:"``.  Parent
        directories are created automatically if they do not exist.
    """

    def __init__(self, db_path: str = "data/comptoir.db") -> None:
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.commit()
        log.info("database.connected", path=self._db_path)
        await self.migrate()

    async def close(self) -> None:
        """Close the database connection gracefully."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            log.info("database.closed")

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def migrate(self) -> None:
        """Create all application tables if they do not already exist."""
        assert self._conn is not None, "Database is not connected"

        await self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS tenants (
                id          TEXT    PRIMARY KEY,
                name        TEXT    NOT NULL,
                credits     REAL    NOT NULL DEFAULT 0,
                unlimited   INTEGER NOT NULL DEFAULT 0,
                created_at  TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS products (
                id          TEXT    PRIMARY KEY,
                tenant_id   TEXT    NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
                name        TEXT    NOT NULL,
                sku         TEXT,
                price       REAL    NOT NULL DEFAULT 0,
                stock       INTEGER NOT NULL DEFAULT 0,
                category    TEXT,
                description TEXT,
                is_active   INTEGER NOT NULL DEFAULT 1,
                updated_at  TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_products_tenant
                ON products(tenant_id, is_active);

            CREATE TABLE IF NOT EXISTS messages (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id       TEXT    NOT NULL,
                conversation_id TEXT    NOT NULL,
                role            TEXT    NOT NULL CHECK(role IN ('user', 'assistant', 'system')),
                content         TEXT    NOT NULL,
                created_at      TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages(conversation_id, id);

            CREATE TABLE IF NOT EXISTS orders (
                id              TEXT    PRIMARY KEY,
                tenant_id       TEXT    NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
                conversation_id TEXT,
                status          TEXT    NOT NULL DEFAULT 'pending',
                total_amount    REAL    NOT NULL DEFAULT 0,
                created_at      TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS credit_usage (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id   TEXT    NOT NULL,
                action      TEXT    NOT NULL,
                cost        REAL    NOT NULL,
                metadata    TEXT    NOT NULL DEFAULT '{}',
                created_at  TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        await self._conn.commit()
        log.info("database.migrated")

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    @property
    def conn(self) -> aiosqlite.Connection:
        """Return the raw connection, raising if not connected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected. Call connect() first.")
        return self._conn

    async def execute(
        self, sql: str, params: tuple[Any, ...] = ()
    ) -> aiosqlite.Cursor:
        """Execute a SQL statement and commit.

        Parameters
        ----------
        sql:
            SQL query string with ``?`` placeholders.
        params:
            Positional bind parameters.

        Returns
        -------
        aiosqlite.Cursor
            The cursor after execution (useful for ``rowcount``, etc.).
        """
        cursor = await self.conn.execute(sql, params)
        await self.conn.commit()
        return cursor

    async def fetch_one(
        self, sql: str, params: tuple[Any, ...] = ()
    ) -> dict[str, Any] | None:
        """Fetch a single row as a dictionary, or ``None`` when nothing matches."""
        cursor = await self.conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_dict(row)

    async def fetch_all(
        self, sql: str, params: tuple[Any, ...] = ()
    ) -> list[dict[str, Any]]:
        """Fetch all matching rows, each returned as a dictionary."""
        cursor = await self.conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
        """Convert an ``aiosqlite.Row`` to a plain ``dict``.

        The JSON ``metadata`` column of ``credit_usage`` is parsed.
        """
        data: dict[str, Any] = dict(row)
        raw = data.get("metadata")
        if isinstance(raw, str):
            try:
                data["metadata"] = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                pass
        return data
