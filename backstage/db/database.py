"""SQLite connection and schema for entity storage."""

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import structlog

from ..exceptions import StorageError

logger = structlog.get_logger("backstage.db")

# Schema version for migrations
SCHEMA_VERSION = 1

# One table per entity kind, all with the same shape.
ENTITY_TABLES = ("commands", "counters", "bad_words")


class Database:
    """Manages the SQLite connection shared by every entity store.

    A single connection is opened with check_same_thread=False and
    every operation runs in a worker thread. The lock is held for
    exactly one operation, never across calls.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        try:
            await asyncio.to_thread(self._initialize_sync)
        except sqlite3.Error as e:
            raise StorageError(
                f"Cannot open database: {e}", operation="initialize"
            ) from e

    def _initialize_sync(self) -> None:
        """Synchronous initialization."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._create_schema()
        logger.info("database_initialized", path=str(self.db_path))

    def _create_schema(self) -> None:
        """Create database tables."""
        cursor = self._conn.cursor()

        for table in ENTITY_TABLES:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    channel TEXT NOT NULL,
                    name TEXT NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    text TEXT NOT NULL,
                    "group" TEXT,
                    disabled BOOLEAN NOT NULL DEFAULT 0,
                    PRIMARY KEY (channel, name)
                )
            """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)
        cursor.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,)
        )

        self._conn.commit()

    @contextmanager
    def transaction(self, operation: str, table: str) -> Iterator[sqlite3.Cursor]:
        """Run one store operation under the connection lock.

        Commits on success, rolls back on any exception. sqlite3 errors
        are re-raised as StorageError; other exceptions pass through.
        """
        if self._conn is None:
            raise StorageError(
                "Database not initialized", operation=operation, table=table
            )
        with self._lock:
            cursor = self._conn.cursor()
            try:
                yield cursor
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                logger.error(
                    "storage_operation_failed",
                    operation=operation,
                    table=table,
                    error=str(e),
                )
                raise StorageError(
                    f"{operation} failed: {e}", operation=operation, table=table
                ) from e
            except BaseException:
                self._conn.rollback()
                raise
            finally:
                cursor.close()

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await asyncio.to_thread(self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._conn.close()
            self._conn = None
