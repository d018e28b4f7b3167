"""SQLite-backed persistent tier for resolved photo URLs."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiosqlite

from ..errors import StoreUnavailableError
from ..models import CacheEntry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Migrations indexed by the user_version they upgrade *to*
MIGRATIONS = {
    1: """
        CREATE TABLE IF NOT EXISTS image_urls (
            path        TEXT PRIMARY KEY,
            url         TEXT NOT NULL,
            resolved_at REAL NOT NULL
        );
    """,
}


class PersistentStore:
    """Durable key/value store of resolved URLs.

    The database is opened lazily on first use and the connection is kept
    for the lifetime of the store.  Concurrent first callers share a single
    open.  A failed open is remembered: later calls raise
    ``StoreUnavailableError`` immediately instead of retrying.
    """

    def __init__(self, db_path: Path):
        """Initialize with path to SQLite database file.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._opening: Optional[asyncio.Task] = None
        self._open_error: Optional[BaseException] = None

    @property
    def available(self) -> bool:
        """False once opening the database has failed."""
        return self._open_error is None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> aiosqlite.Connection:
        """Return the open connection, opening the database if needed.

        Returns:
            Open aiosqlite connection

        Raises:
            StoreUnavailableError: If the database cannot be opened
        """
        if self._db is not None:
            return self._db

        if self._open_error is not None:
            raise StoreUnavailableError(
                f"URL store at {self.db_path} is unavailable"
            ) from self._open_error

        if self._opening is None:
            self._opening = asyncio.get_running_loop().create_task(self._connect())

        # Shield so a cancelled caller does not cancel the shared open
        return await asyncio.shield(self._opening)

    async def _connect(self) -> aiosqlite.Connection:
        db = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(self.db_path)
            await db.execute("PRAGMA journal_mode=WAL")
            await self._migrate(db)
        except (aiosqlite.Error, OSError) as e:
            self._open_error = e
            self._opening = None
            if db is not None:
                await db.close()
            logger.warning(f"URL store at {self.db_path} unavailable, caching in memory only: {e}")
            raise StoreUnavailableError(f"Cannot open URL store at {self.db_path}: {e}") from e

        self._db = db
        self._opening = None
        logger.info(f"URL store opened at {self.db_path}")
        return db

    async def _migrate(self, db: aiosqlite.Connection) -> None:
        """Upgrade the schema to SCHEMA_VERSION."""
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        version = row[0] if row else 0

        if version > SCHEMA_VERSION:
            raise aiosqlite.DatabaseError(
                f"URL store schema version {version} is newer than supported version {SCHEMA_VERSION}"
            )

        for target in range(version + 1, SCHEMA_VERSION + 1):
            await db.executescript(MIGRATIONS[target])
            await db.execute(f"PRAGMA user_version = {target}")
            logger.debug(f"Migrated URL store schema to version {target}")

        await db.commit()

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Retrieve the stored entry for a storage path.

        Args:
            key: Storage path

        Returns:
            CacheEntry or None if not stored
        """
        db = await self.open()
        async with db.execute(
            "SELECT path, url, resolved_at FROM image_urls WHERE path = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            return None
        return CacheEntry.from_row(row)

    async def put(self, entry: CacheEntry) -> None:
        """Insert or replace an entry.

        Args:
            entry: Entry to store
        """
        db = await self.open()
        await db.execute(
            "INSERT OR REPLACE INTO image_urls (path, url, resolved_at) VALUES (?, ?, ?)",
            entry.to_row(),
        )
        await db.commit()

    async def delete(self, key: str) -> None:
        """Remove the entry for a storage path (no-op if absent)."""
        db = await self.open()
        await db.execute("DELETE FROM image_urls WHERE path = ?", (key,))
        await db.commit()

    async def clear(self) -> None:
        """Remove every stored entry."""
        db = await self.open()
        await db.execute("DELETE FROM image_urls")
        await db.commit()

    async def count(self) -> int:
        """Return the number of stored entries."""
        db = await self.open()
        async with db.execute("SELECT COUNT(*) FROM image_urls") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def close(self) -> None:
        """Close the database connection."""
        if self._opening is not None:
            try:
                await self._opening
            except StoreUnavailableError:
                pass

        if self._db:
            await self._db.close()
            self._db = None
            logger.info("URL store connection closed")
