# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SQLite-backed state store — persistent settings, counter and resolution cache.

Uses ``aiosqlite`` with a single long-lived connection. WAL journal mode lets
the CLI read and write while a ``run`` process holds the same database.
Schema versioned via ``PRAGMA user_version``.

Dependencies: errors.py only (implements ``store.StateStore``).
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from contextlib import suppress
from pathlib import Path
from typing import Any

import aiosqlite

from .errors import StoreError

_SCHEMA_VERSION = 1

_CREATE_KV = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL
)
"""


async def _migrate(db: aiosqlite.Connection) -> None:
    """Bring the schema up to ``_SCHEMA_VERSION``; refuse databases from a newer release."""
    async with db.execute("PRAGMA user_version") as cursor:
        found = (await cursor.fetchone() or (0,))[0]
    if found > _SCHEMA_VERSION:
        raise StoreError(f"Database schema version {found} is newer than supported version {_SCHEMA_VERSION}")
    if found == _SCHEMA_VERSION:
        return
    await db.execute(_CREATE_KV)
    await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
    await db.commit()


class SqliteStore:
    """``StateStore`` over one SQLite file. Build it with ``await SqliteStore.create(path)``."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def create(cls, db_path: str | Path) -> SqliteStore:
        """Open the state database at *db_path*, creating file, parents and schema as needed.

        Raises:
            StoreError: the file was written by a newer schema version.
        """
        path = Path(db_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(str(path))
        try:
            await db.execute("PRAGMA journal_mode = WAL")
            await db.execute("PRAGMA busy_timeout = 5000")
            await _migrate(db)
        except BaseException:
            await db.close()
            raise
        return cls(db)

    # ── StateStore methods ────────────────────────────────────────

    async def get(self, key: str, default: Any = None) -> Any:
        cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if row is None:
            return default
        return json.loads(row[0])

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}
        placeholders = ",".join("?" for _ in keys)
        cursor = await self._db.execute(f"SELECT key, value FROM kv WHERE key IN ({placeholders})", keys)
        rows = await cursor.fetchall()
        return {row[0]: json.loads(row[1]) for row in rows}

    async def set(self, key: str, value: Any) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
            (key, json.dumps(value, ensure_ascii=False)),
        )
        await self._db.commit()

    async def set_many(self, values: dict[str, Any]) -> None:
        await self._db.executemany(
            "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
            [(k, json.dumps(v, ensure_ascii=False)) for k, v in values.items()],
        )
        await self._db.commit()

    async def increment(self, key: str, amount: int = 1) -> int:
        """Atomically add *amount* to an integer value (missing → 0)."""
        await self._db.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = CAST(CAST(value AS INTEGER) + ? AS TEXT)",
            (key, json.dumps(amount), amount),
        )
        await self._db.commit()
        return int(await self.get(key, 0))

    async def close(self) -> None:
        """Close the database connection. Idempotent."""
        with suppress(Exception):
            await self._db.close()
