"""SQLite database layer for stored model configurations.

Uses aiosqlite for async access with WAL mode for concurrent reads.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ai_model_configs (
    id                 TEXT PRIMARY KEY,
    name               TEXT NOT NULL,
    model              TEXT NOT NULL,
    base_url           TEXT NOT NULL DEFAULT '',
    api_key_encrypted  TEXT NOT NULL DEFAULT '',
    temperature        REAL NOT NULL DEFAULT 0.7,
    is_default         INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_configs_default ON ai_model_configs(is_default);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Open the database and create tables if needed.

    Args:
        db_path: Path to the SQLite file (supports ~ expansion), or
            ``:memory:``.
    """
    if db_path != ":memory:":
        resolved = Path(db_path).expanduser()
        resolved.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(resolved)

    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.executescript(_SCHEMA)
    await db.commit()

    logger.info("Config database initialized at %s", db_path)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    """Close the database connection."""
    await db.close()
