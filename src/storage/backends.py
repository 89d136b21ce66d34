"""Storage backends for named cache partitions.

This module provides:
- CacheStorage: abstract async interface used by the CacheManager
- MemoryStorage: process-local storage (tests, ephemeral hosts)
- SQLiteStorage: single-file SQLite storage shared across reloads

Key order returned by ``keys()`` is insertion order. Replacing an entry
moves it to the back, so the front of the order is the oldest write.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from domain.models import RequestKey, StoredResponse
from shared.constants import STORAGE_FILENAME
from shared.errors import StorageError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CacheStorage(ABC):
    """Async key-value storage split into named partitions."""

    @abstractmethod
    async def partition_names(self) -> list[str]:
        """Names of all existing partitions, oldest first."""

    @abstractmethod
    async def create_partition(self, name: str) -> None:
        """Create partition ``name`` if it does not exist."""

    @abstractmethod
    async def has_partition(self, name: str) -> bool: ...

    @abstractmethod
    async def delete_partition(self, name: str) -> bool:
        """Drop the partition and all its entries. True if it existed."""

    @abstractmethod
    async def get(self, name: str, key: RequestKey) -> StoredResponse | None: ...

    @abstractmethod
    async def put(self, name: str, key: RequestKey, response: StoredResponse) -> None: ...

    @abstractmethod
    async def delete(self, name: str, key: RequestKey) -> bool: ...

    @abstractmethod
    async def keys(self, name: str) -> list[RequestKey]: ...

    async def count(self, name: str) -> int:
        return len(await self.keys(name))

    def close(self) -> None:  # noqa: B027
        """Release backend resources."""


class MemoryStorage(CacheStorage):
    """Storage kept in ordered dicts for the lifetime of the process."""

    def __init__(self) -> None:
        self._partitions: dict[str, dict[RequestKey, StoredResponse]] = {}

    async def partition_names(self) -> list[str]:
        return list(self._partitions)

    async def create_partition(self, name: str) -> None:
        self._partitions.setdefault(name, {})

    async def has_partition(self, name: str) -> bool:
        return name in self._partitions

    async def delete_partition(self, name: str) -> bool:
        return self._partitions.pop(name, None) is not None

    async def get(self, name: str, key: RequestKey) -> StoredResponse | None:
        return self._partitions.get(name, {}).get(key)

    async def put(self, name: str, key: RequestKey, response: StoredResponse) -> None:
        entries = self._partitions.setdefault(name, {})
        entries.pop(key, None)
        entries[key] = response

    async def delete(self, name: str, key: RequestKey) -> bool:
        return self._partitions.get(name, {}).pop(key, None) is not None

    async def keys(self, name: str) -> list[RequestKey]:
        return list(self._partitions.get(name, {}))


class SQLiteStorage(CacheStorage):
    """SQLite-backed partition storage.

    Features:
    - One database file for all partitions
    - WAL mode for concurrent readers across app instances
    - AUTOINCREMENT sequence gives a stable FIFO key order
    - All sqlite3 calls run on one worker thread, never on the event loop

    Every sqlite3 error is re-raised as StorageError so callers can
    degrade to a cache miss or a skipped write.

    Usage:
        storage = SQLiteStorage(cache_dir)
        await storage.put('aerafield-tiles-v2', key, response)
        cached = await storage.get('aerafield-tiles-v2', key)
        storage.close()
    """

    def __init__(self, cache_dir: str | Path) -> None:
        """Initialize storage.

        Args:
            cache_dir: Directory holding the SQLite file.
        """
        self.cache_dir = Path(cache_dir)
        self.db_path = self.cache_dir / STORAGE_FILENAME
        self._conn: sqlite3.Connection | None = None
        self._executor: ThreadPoolExecutor | None = None
        logger.info('SQLiteStorage initialized at %s', self.db_path)

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking storage call on the worker thread."""
        if self._executor is None:
            # Single worker: the connection is never used from two threads at once
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='cache-sqlite')
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                conn.execute('PRAGMA journal_mode=WAL')
                conn.execute('PRAGMA synchronous=NORMAL')
                conn.execute('PRAGMA foreign_keys=ON')
                self._init_schema(conn)
            except (sqlite3.Error, OSError) as exc:
                msg = f'Cannot open cache storage {self.db_path}: {exc}'
                raise StorageError(msg) from exc
            self._conn = conn
        return self._conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript('''
            CREATE TABLE IF NOT EXISTS partitions (
                name TEXT PRIMARY KEY,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                partition TEXT NOT NULL
                    REFERENCES partitions(name) ON DELETE CASCADE,
                method TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                status_text TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                UNIQUE (partition, method, url)
            );

            CREATE INDEX IF NOT EXISTS idx_entries_partition ON entries(partition, seq);
        ''')
        conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = self._get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = cursor.fetchall()
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            msg = f'Cache storage error: {exc}'
            raise StorageError(msg) from exc
        return rows

    def _execute_rowcount(self, sql: str, params: tuple = ()) -> int:
        conn = self._get_connection()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            msg = f'Cache storage error: {exc}'
            raise StorageError(msg) from exc
        return cursor.rowcount

    def _ensure_partition(self, name: str) -> None:
        self._execute(
            'INSERT OR IGNORE INTO partitions (name, created_at) VALUES (?, ?)',
            (name, int(time.time())),
        )

    # --- blocking bodies, run on the worker thread

    def _partition_names_sync(self) -> list[str]:
        rows = self._execute('SELECT name FROM partitions ORDER BY created_at, rowid')
        return [row[0] for row in rows]

    def _has_partition_sync(self, name: str) -> bool:
        return bool(self._execute('SELECT 1 FROM partitions WHERE name = ?', (name,)))

    def _delete_partition_sync(self, name: str) -> bool:
        self._execute_rowcount('DELETE FROM entries WHERE partition = ?', (name,))
        return self._execute_rowcount('DELETE FROM partitions WHERE name = ?', (name,)) > 0

    def _get_sync(self, name: str, key: RequestKey) -> StoredResponse | None:
        rows = self._execute(
            '''SELECT status, status_text, headers, body FROM entries
               WHERE partition = ? AND method = ? AND url = ?''',
            (name, key.method, key.url),
        )
        if not rows:
            return None
        status, status_text, headers, body = rows[0]
        try:
            header_pairs = tuple((str(k), str(v)) for k, v in json.loads(headers))
        except (ValueError, TypeError) as exc:
            msg = f'Corrupt headers for {key.url}'
            raise StorageError(msg) from exc
        return StoredResponse(
            status=status,
            status_text=status_text,
            headers=header_pairs,
            body=bytes(body),
        )

    def _put_sync(self, name: str, key: RequestKey, response: StoredResponse) -> None:
        self._ensure_partition(name)
        conn = self._get_connection()
        try:
            # Replace = delete + insert so the entry moves to the back of the order
            conn.execute(
                'DELETE FROM entries WHERE partition = ? AND method = ? AND url = ?',
                (name, key.method, key.url),
            )
            conn.execute(
                '''INSERT INTO entries
                   (partition, method, url, status, status_text, headers, body)
                   VALUES (?, ?, ?, ?, ?, ?, ?)''',
                (
                    name,
                    key.method,
                    key.url,
                    response.status,
                    response.status_text,
                    json.dumps([list(pair) for pair in response.headers]),
                    response.body,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            msg = f'Cannot store {key.url} in {name}: {exc}'
            raise StorageError(msg) from exc

    def _delete_sync(self, name: str, key: RequestKey) -> bool:
        deleted = self._execute_rowcount(
            'DELETE FROM entries WHERE partition = ? AND method = ? AND url = ?',
            (name, key.method, key.url),
        )
        return deleted > 0

    def _keys_sync(self, name: str) -> list[RequestKey]:
        rows = self._execute(
            'SELECT method, url FROM entries WHERE partition = ? ORDER BY seq',
            (name,),
        )
        return [RequestKey(method=row[0], url=row[1]) for row in rows]

    def _count_sync(self, name: str) -> int:
        rows = self._execute('SELECT COUNT(*) FROM entries WHERE partition = ?', (name,))
        return int(rows[0][0])

    # --- CacheStorage interface

    async def partition_names(self) -> list[str]:
        return await self._run(self._partition_names_sync)

    async def create_partition(self, name: str) -> None:
        await self._run(self._ensure_partition, name)

    async def has_partition(self, name: str) -> bool:
        return await self._run(self._has_partition_sync, name)

    async def delete_partition(self, name: str) -> bool:
        return await self._run(self._delete_partition_sync, name)

    async def get(self, name: str, key: RequestKey) -> StoredResponse | None:
        return await self._run(self._get_sync, name, key)

    async def put(self, name: str, key: RequestKey, response: StoredResponse) -> None:
        await self._run(self._put_sync, name, key, response)

    async def delete(self, name: str, key: RequestKey) -> bool:
        return await self._run(self._delete_sync, name, key)

    async def keys(self, name: str) -> list[RequestKey]:
        return await self._run(self._keys_sync, name)

    async def count(self, name: str) -> int:
        return await self._run(self._count_sync, name)

    def close(self) -> None:
        """Wait for in-flight calls, stop the worker and close the database."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info('SQLiteStorage closed')

    def __enter__(self) -> SQLiteStorage:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
