"""SQLite database management with WAL mode and schema versioning."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

PRAGMAS = ("journal_mode=WAL", "synchronous=NORMAL", "busy_timeout=5000")

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Finished and skipped timer sessions
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    phase TEXT NOT NULL,
    start_time DATETIME NOT NULL,
    end_time DATETIME,
    target_seconds INTEGER NOT NULL,
    duration_seconds INTEGER DEFAULT 0,
    project_ref TEXT,
    description TEXT,
    tags JSON,
    completed BOOLEAN DEFAULT FALSE,
    cycle_number INTEGER DEFAULT 0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_sessions_phase ON sessions(phase);

-- Key/value store (engine snapshot lives here)
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


class Database:
    """Async SQLite store for session history and the engine snapshot.

    One connection in autocommit mode; writes are serialized through a lock,
    and statements issued by the task that owns an open ``transaction()``
    bypass it.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._transaction_task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(f"Database {self.db_path.name} is not connected")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, enable WAL and create missing tables."""
        if self._connection is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit; transactions are explicit
        conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        for pragma in PRAGMAS:
            await conn.execute(f"PRAGMA {pragma}")
        conn.row_factory = aiosqlite.Row
        self._connection = conn

        version = await self._init_schema()
        logger.info(f"Database ready: {self.db_path} (schema v{version})")

    async def _init_schema(self) -> int:
        await self._conn.executescript(SCHEMA)

        row = await self.fetch_one("SELECT MAX(version) AS version FROM schema_version")
        stored = (row or {}).get("version") or 0
        if stored < SCHEMA_VERSION:
            await self._conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            logger.info(f"Session schema upgraded from v{stored} to v{SCHEMA_VERSION}")
        return SCHEMA_VERSION

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        logger.info("Database connection closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed statements atomically; roll back on any error."""
        conn = self._conn
        async with self._lock:
            await conn.execute("BEGIN")
            self._transaction_task = asyncio.current_task()
            try:
                yield
                await conn.execute("COMMIT")
            except Exception:
                await conn.execute("ROLLBACK")
                raise
            finally:
                self._transaction_task = None

    def _owns_transaction(self) -> bool:
        return self._transaction_task is not None and self._transaction_task is asyncio.current_task()

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Run a write statement; returns the last row id (0 if none)."""
        conn = self._conn
        if self._owns_transaction():
            cursor = await conn.execute(query, params)
        else:
            async with self._lock:
                cursor = await conn.execute(query, params)
        return cursor.lastrowid or 0

    async def fetch_one(self, query: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        async with self._conn.execute(query, params) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        async with self._conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def upsert(self, table: str, row: dict[str, Any]) -> int:
        """Insert ``row`` into ``table``, replacing a row with the same key."""
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        return await self.execute(
            f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(row.values()),
        )

    async def check_integrity(self) -> bool:
        """Run SQLite's integrity check; False (and an error log) on damage."""
        row = await self.fetch_one("PRAGMA integrity_check")
        ok = row is not None and next(iter(row.values())) == "ok"
        if not ok:
            logger.error(f"Integrity check failed for {self.db_path}: {row}")
        return ok

    # --- Key/value store ----------------------------------------------------
    async def get_config(self, key: str, default: Any = None) -> Any:
        row = await self.fetch_one("SELECT value FROM config WHERE key = ?", (key,))
        return row["value"] if row else default

    async def set_config(self, key: str, value: Any) -> None:
        """Store ``value`` (as text) under ``key``."""
        await self.execute(
            "INSERT INTO config (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
            (key, str(value)),
        )


async def init_database(db_path: Path) -> Database:
    """Create and connect a database at ``db_path``."""
    db = Database(db_path)
    await db.connect()
    return db
