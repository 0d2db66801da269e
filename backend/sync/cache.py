"""Durable per-device key/value cache backed by SQLite.

Every execution context on a device (client tabs, background workers) shares
one LocalCacheStore. Writes are last-writer-wins with no locking; every write
is announced to the store's subscribers so other contexts can converge
without a network round trip.
"""

from __future__ import annotations

import contextlib
import os
import sqlite3
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from shared.errors import CacheError
from sync.codec import decode_snapshot, encode_snapshot

if TYPE_CHECKING:
    from collections.abc import Callable

    CacheListener = Callable[[str, bytes], None]

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS cache (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

TIMESTAMP_SUFFIX = "_timestamp"


class LocalCacheStore:
    """SQLite-backed key/value store holding the last known snapshot per collection.

    Reads of absent keys return None and never raise. Storage failures raise
    CacheError; callers treat them as non-fatal because in-memory state stays
    correct even when the durable copy could not be written.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._listeners: list[CacheListener] = []

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise CacheError("Cache store is not open")
        return self._conn

    def open(self) -> None:
        """Open the database file, create the schema and restrict file permissions."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.executescript(_SCHEMA_SQL)
        except sqlite3.Error as e:
            raise CacheError(f"failed to open cache at {self._path}: {e}") from e
        self._harden_permissions()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _harden_permissions(self) -> None:
        if self._path == ":memory:":
            return
        for suffix in ("", "-wal", "-shm"):
            with contextlib.suppress(FileNotFoundError):
                os.chmod(self._path + suffix, _DB_FILE_PERMISSIONS)  # noqa: PTH101

    def get(self, key: str) -> bytes | None:
        try:
            row = self.connection.execute("SELECT value FROM cache WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"failed to read cache key {key!r}: {e}") from e
        return None if row is None else bytes(row[0])

    def set(self, key: str, value: bytes) -> None:
        try:
            self.connection.execute(
                "INSERT INTO cache (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (key, value, int(time.time() * 1000)),
            )
            self.connection.commit()
        except sqlite3.Error as e:
            raise CacheError(f"failed to write cache key {key!r}: {e}") from e
        self._notify(key, value)

    def delete(self, key: str) -> None:
        try:
            self.connection.execute("DELETE FROM cache WHERE key = ?", (key,))
            self.connection.commit()
        except sqlite3.Error as e:
            raise CacheError(f"failed to delete cache key {key!r}: {e}") from e

    def keys(self) -> list[str]:
        try:
            rows = self.connection.execute("SELECT key FROM cache ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise CacheError(f"failed to list cache keys: {e}") from e
        return [row[0] for row in rows]

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register a write listener. Return a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str, value: bytes) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception:
                logger.exception("cache listener failed", key=key)


def write_snapshot(store: LocalCacheStore, key: str, value: Any) -> None:  # noqa: ANN401
    """Persist a collection snapshot and stamp its last local write time."""
    store.set(key, encode_snapshot(value))
    store.set(f"{key}{TIMESTAMP_SUFFIX}", str(int(time.time() * 1000)).encode())


def read_snapshot(store: LocalCacheStore, key: str) -> Any | None:  # noqa: ANN401
    raw = store.get(key)
    if raw is None:
        return None
    return decode_snapshot(raw)


def read_timestamp(store: LocalCacheStore, key: str) -> int | None:
    raw = store.get(f"{key}{TIMESTAMP_SUFFIX}")
    if raw is None:
        return None
    try:
        return int(raw.decode())
    except (UnicodeDecodeError, ValueError):
        return None
