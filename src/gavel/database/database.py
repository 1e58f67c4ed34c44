"""
Database coordinator for the governance store.

The Database class owns one ConnectionManager and the schema lifecycle. All
components receive a Database handle explicitly; ``get_db()`` returns a
process-wide default for the service entrypoint.

Lifecycle:
    1. ``await db.initialize()`` at startup (opens the connection, creates schema)
    2. ``db.read()`` / ``db.transaction()`` from repositories and components
    3. ``await db.shutdown()`` at exit
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncContextManager

import aiosqlite

from gavel.database.db_connection import ConnectionManager
from gavel.database.db_schema import SchemaManager
from gavel.util.logger import get_logger

logger = get_logger("database")

# Default database file path
DB_PATH = Path("./data/gavel.db").resolve()


class Database:
    """
    Central handle for all governance storage.

    Wraps a single long-lived aiosqlite connection and exposes the read and
    serialised-write contexts the repositories work against.
    """

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = db_path
        self._connection = ConnectionManager()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> bool:
        """
        Open the connection and create the schema.

        Returns:
            True if initialization succeeded, False otherwise
        """
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return True

        try:
            await self._connection.open(self.db_path)
            await SchemaManager.initialize_schema(self._connection.connection)
            self._initialized = True
            logger.info("[DATABASE] Database initialized at %s", self.db_path)
            return True
        except Exception as e:
            logger.error("[DATABASE] Database initialization failed: %s", e)
            await self._connection.close()
            return False

    async def shutdown(self) -> None:
        """Close the underlying connection. Safe to call more than once."""
        if not self._initialized:
            return
        await self._connection.close()
        self._initialized = False
        logger.info("[DATABASE] Database shutdown complete")

    def read(self) -> AsyncContextManager[aiosqlite.Connection]:
        """Context manager yielding the connection for reads."""
        return self._connection.read()

    def transaction(self) -> AsyncContextManager[aiosqlite.Connection]:
        """Context manager yielding the connection inside a serialised write
        transaction (commit on success, rollback on error)."""
        return self._connection.transaction()


# Process-wide default instance used by the service entrypoint
database = Database()


def get_db() -> Database:
    """Return the process-wide Database instance."""
    return database
