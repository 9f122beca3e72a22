"""Key-value store for round, pending block and balance state.

Hashes and sets are kept in two SQLite tables. Every command, and every
queued transaction, runs inside a single ``BEGIN IMMEDIATE`` ... ``COMMIT``
so a batch is applied all-or-nothing.
"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Dict, List, Optional

import aiosqlite

from ..errors import StoreError

logger = logging.getLogger("Store")


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS kv_hashes (
        key TEXT NOT NULL,
        field TEXT NOT NULL,
        value REAL NOT NULL DEFAULT 0,
        PRIMARY KEY (key, field)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS kv_sets (
        key TEXT NOT NULL,
        member TEXT NOT NULL,
        PRIMARY KEY (key, member)
    )
    """,
)


async def _hash_increment_float(db, key: str, field: str, amount: float):
    await db.execute(
        """
        INSERT INTO kv_hashes (key, field, value) VALUES (?, ?, ?)
        ON CONFLICT(key, field) DO UPDATE SET value = value + excluded.value
        """,
        (key, field, float(amount)),
    )


async def _set_add(db, key: str, member: str):
    await db.execute(
        "INSERT OR IGNORE INTO kv_sets (key, member) VALUES (?, ?)", (key, member)
    )


async def _set_remove(db, key: str, member: str):
    await db.execute(
        "DELETE FROM kv_sets WHERE key = ? AND member = ?", (key, member)
    )


async def _delete(db, key: str):
    await db.execute("DELETE FROM kv_hashes WHERE key = ?", (key,))
    await db.execute("DELETE FROM kv_sets WHERE key = ?", (key,))


async def _key_exists(db, key: str) -> bool:
    for table in ("kv_hashes", "kv_sets"):
        cursor = await db.execute(f"SELECT 1 FROM {table} WHERE key = ? LIMIT 1", (key,))
        row = await cursor.fetchone()
        await cursor.close()
        if row is not None:
            return True
    return False


async def _rename(db, old_key: str, new_key: str, replace: bool = True):
    if not await _key_exists(db, old_key):
        raise StoreError(f"rename failed, no such key: {old_key}")
    if old_key == new_key:
        return
    if not replace and await _key_exists(db, new_key):
        raise StoreError(f"rename failed, target key exists: {new_key}")
    await _delete(db, new_key)
    await db.execute("UPDATE kv_hashes SET key = ? WHERE key = ?", (new_key, old_key))
    await db.execute("UPDATE kv_sets SET key = ? WHERE key = ?", (new_key, old_key))


def _retrieve_batch_error(batch: asyncio.Future):
    # the awaiting caller may have been cancelled; record what happened to its batch
    if not batch.cancelled() and batch.exception() is not None:
        logger.debug("Batch rolled back: %s", batch.exception())


class Transaction:
    """Write commands queued for one atomic execution.

    Command methods return the transaction so calls can be chained::

        await store.transaction().delete(round_key).set_remove(pending, value).execute()
    """

    def __init__(self, store: "KeyValueStore"):
        self._store = store
        self._commands = []

    def __len__(self):
        return len(self._commands)

    def hash_increment_float(self, key: str, field: str, amount: float) -> "Transaction":
        self._commands.append(functools.partial(_hash_increment_float, key=key, field=field, amount=amount))
        return self

    def set_add(self, key: str, member: str) -> "Transaction":
        self._commands.append(functools.partial(_set_add, key=key, member=member))
        return self

    def set_remove(self, key: str, member: str) -> "Transaction":
        self._commands.append(functools.partial(_set_remove, key=key, member=member))
        return self

    def rename(self, old_key: str, new_key: str, replace: bool = True) -> "Transaction":
        """Move old_key to new_key. With replace=False the batch fails if new_key exists."""
        self._commands.append(
            functools.partial(_rename, old_key=old_key, new_key=new_key, replace=replace)
        )
        return self

    def delete(self, key: str) -> "Transaction":
        self._commands.append(functools.partial(_delete, key=key))
        return self

    async def execute(self):
        """Apply every queued command or none of them. Raises StoreError."""
        commands, self._commands = self._commands, []
        await self._store._execute(commands)


class KeyValueStore:
    """aiosqlite backed store with hash, set, rename and transaction commands"""

    def __init__(self, db_path="data/pool.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        # one connection is shared, so transactions must not interleave on it
        self._lock = asyncio.Lock()

    async def open(self):
        if self._db is not None:
            return
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(str(self.db_path), isolation_level=None)
            for statement in SCHEMA:
                await self._db.execute(statement)
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to open store {self.db_path}: {e}") from e
        logger.debug("Store opened at %s", self.db_path)

    async def close(self):
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Store is not open")
        return self._db

    async def _execute(self, commands):
        if not commands:
            return
        # a cancelled caller must not leave the shared connection mid-transaction,
        # so the batch runs to COMMIT or ROLLBACK in its own task
        batch = asyncio.ensure_future(self._run_batch(commands))
        batch.add_done_callback(_retrieve_batch_error)
        await asyncio.shield(batch)

    async def _run_batch(self, commands):
        async with self._lock:
            db = self._connection()
            try:
                await db.execute("BEGIN IMMEDIATE")
                for command in commands:
                    await command(db)
                await db.execute("COMMIT")
            except BaseException as e:
                if db.in_transaction:
                    await db.execute("ROLLBACK")
                if isinstance(e, (aiosqlite.Error, ValueError)):
                    raise StoreError(f"Transaction failed: {e}") from e
                raise

    def transaction(self) -> Transaction:
        return Transaction(self)

    async def hash_increment_float(self, key: str, field: str, amount: float):
        await self.transaction().hash_increment_float(key, field, amount).execute()

    async def set_add(self, key: str, member: str):
        await self.transaction().set_add(key, member).execute()

    async def set_remove(self, key: str, member: str):
        await self.transaction().set_remove(key, member).execute()

    async def rename(self, old_key: str, new_key: str, replace: bool = True):
        await self.transaction().rename(old_key, new_key, replace).execute()

    async def delete(self, key: str):
        await self.transaction().delete(key).execute()

    async def hash_get_all(self, key: str) -> Dict[str, float]:
        rows = await self._fetch("SELECT field, value FROM kv_hashes WHERE key = ?", (key,))
        return {field: value for field, value in rows}

    async def hash_get(self, key: str, field: str) -> Optional[float]:
        rows = await self._fetch(
            "SELECT value FROM kv_hashes WHERE key = ? AND field = ?", (key, field)
        )
        return rows[0][0] if rows else None

    async def set_members(self, key: str) -> List[str]:
        rows = await self._fetch("SELECT member FROM kv_sets WHERE key = ?", (key,))
        return [row[0] for row in rows]

    async def exists(self, key: str) -> bool:
        async with self._lock:
            try:
                return await _key_exists(self._connection(), key)
            except (aiosqlite.Error, ValueError) as e:
                raise StoreError(f"Exists check failed for {key}: {e}") from e

    async def _fetch(self, query: str, params: tuple):
        async with self._lock:
            db = self._connection()
            try:
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                await cursor.close()
                return rows
            except (aiosqlite.Error, ValueError) as e:
                raise StoreError(f"Query failed: {e}") from e
