from __future__ import annotations

from pathlib import Path

import aiosqlite

MEMORY = ":memory:"


async def get_connection(db_path: str) -> aiosqlite.Connection:
    """Open a SQLite connection for the column store.

    File databases get WAL journaling and their parent directory created;
    ``:memory:`` databases are opened as-is.
    """
    if db_path != MEMORY:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path)
    if db_path != MEMORY:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = aiosqlite.Row
    return conn
