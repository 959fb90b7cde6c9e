"""Async SQLite document store for multichain-wallet.

Uses ``aiosqlite`` for non-blocking database access with WAL mode and
dictionary-style row results. State is kept as whole JSON documents
(load-all / save-all), one row per document name.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiosqlite


class Database:
    """Thin async wrapper around an SQLite database.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file.  The file (and any
        intermediate directories) will be created automatically on
        :meth:`connect` if they do not already exist.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))

        # WAL keeps readers from blocking the single writer.
        await self._conn.execute("PRAGMA journal_mode=WAL;")

        # Return rows as ``sqlite3.Row`` so we can convert to dicts easily.
        self._conn.row_factory = sqlite3.Row

        await self._migrate()

    async def close(self) -> None:
        """Close the database connection gracefully."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement and commit."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        """Execute a query and return the first row as a dict, or ``None``."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def load_document(self, name: str) -> dict[str, Any]:
        """Return the stored document *name*, or an empty dict if absent."""
        row = await self.fetch_one("SELECT body FROM documents WHERE name = ?", (name,))
        if row is None:
            return {}
        return json.loads(row["body"])

    async def save_document(self, name: str, body: dict[str, Any]) -> None:
        """Replace document *name* with *body* in full."""
        await self.execute(
            "INSERT INTO documents (name, body, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(name) DO UPDATE SET body = excluded.body, "
            "updated_at = excluded.updated_at",
            (
                name,
                json.dumps(body, ensure_ascii=False),
                datetime.now(timezone.utc).isoformat(),
            ),
        )

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def _migrate(self) -> None:
        """Create all required tables if they do not already exist."""
        assert self._conn is not None

        await self._conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS documents (
                name TEXT PRIMARY KEY,
                body TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        await self._conn.commit()


# ------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------

def get_database(data_dir: Path, filename: str = "wallet.db") -> Database:
    """Return a :class:`Database` instance pointing at ``data_dir/filename``.

    An absolute *filename* is used as-is. The caller is responsible for
    calling :meth:`Database.connect` before using the returned instance.
    """
    return Database(Path(data_dir) / filename)
