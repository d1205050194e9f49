import asyncio
import logging
import os
from typing import Protocol

import aiosqlite
from fastapi import Depends
from pydantic import ValidationError

from models.schemas import Snapshot

logger = logging.getLogger("pricebook.db")
DB_PATH = os.environ.get("DB_PATH", "/data/pricebook.db")

# Held by the HTTP layer around every read-compute-write mutation.  The
# services assume a single writer and take no lock themselves.
snapshot_lock = asyncio.Lock()


class SnapshotStore(Protocol):
    """Full-snapshot key-value persistence: read it all, write it all."""

    async def read(self) -> Snapshot: ...

    async def write(self, snapshot: Snapshot) -> None: ...


class SqliteSnapshotStore:
    """Keeps the whole {receipts, products} document as one JSON row."""

    def __init__(self, db: aiosqlite.Connection, key: str = "default"):
        self.db = db
        self.key = key

    async def read(self) -> Snapshot:
        async with self.db.execute(
            "SELECT body FROM snapshots WHERE key = ?", (self.key,)
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return Snapshot()
        try:
            return Snapshot.model_validate_json(row[0])
        except ValidationError as e:
            logger.warning("Snapshot %r is unreadable, starting empty: %s", self.key, e)
            return Snapshot()

    async def write(self, snapshot: Snapshot) -> None:
        await self.db.execute(
            """
            INSERT INTO snapshots (key, body, updated_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET
                body       = excluded.body,
                updated_at = excluded.updated_at
            """,
            (self.key, snapshot.model_dump_json()),
        )
        await self.db.commit()
        logger.debug("Wrote snapshot %r: %d receipts, %d products",
                     self.key, len(snapshot.receipts), len(snapshot.products))


async def get_db() -> aiosqlite.Connection:
    """Dependency: yields an open DB connection."""
    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        yield db


async def get_store(db: aiosqlite.Connection = Depends(get_db)) -> SqliteSnapshotStore:
    """Dependency: the snapshot store over the request's connection."""
    return SqliteSnapshotStore(db)


async def init_db():
    """Create all tables if they don't exist."""
    directory = os.path.dirname(DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    async with aiosqlite.connect(DB_PATH) as db:
        await db.executescript(SCHEMA)
        await db.commit()
    logger.info("Initialized at %s", DB_PATH)


SCHEMA = """
-- One JSON document per key: {"receipts": [...], "products": [...]}
CREATE TABLE IF NOT EXISTS snapshots (
    key         TEXT PRIMARY KEY,
    body        TEXT NOT NULL,
    updated_at  TEXT DEFAULT (datetime('now'))
);
"""
