"""SQLite-backed record store for the hub.

Every collection lives in one `records` table. Rows are addressed by
(collection, id) and can also be found by their logical key (access code
for teams and managers). Writes are last-writer-wins upserts: the hub is
the single serialization point but applies no application-level merge.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError
from shared.records import TournamentStatus
from sync.collections import COLLECTION_SPECS, TOURNAMENT_OWNED, CollectionName

if TYPE_CHECKING:
    from sync.collections import CollectionSpec

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS records (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    key TEXT NOT NULL,
    tournament_id TEXT,
    data TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_records_key
    ON records (collection, key);

CREATE INDEX IF NOT EXISTS idx_records_tournament
    ON records (collection, tournament_id);
"""


class RecordNotFoundError(Exception):
    pass


class DuplicateRecordError(Exception):
    pass


class ArchivedRecordError(Exception):
    pass


class RecordStore:
    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Record store is not connected")
        return self._conn

    def connect(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_SCHEMA_SQL)
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

    @staticmethod
    def _validate(spec: CollectionSpec, data: dict[str, Any]) -> dict[str, Any]:
        try:
            return spec.parse_record(data).to_wire()
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {spec.entity}: {e.errors()[0]['msg']}") from e

    def _find_row(self, collection: CollectionName, id_or_key: str) -> tuple[str, str] | None:
        return self.connection.execute(
            "SELECT id, data FROM records WHERE collection = ? AND (id = ? OR key = ?) ORDER BY id = ? DESC LIMIT 1",
            (collection.value, id_or_key, id_or_key, id_or_key),
        ).fetchone()

    def _check_archived(self, collection: CollectionName, record_id: str, record: dict[str, Any]) -> None:
        """Reject a write that moves an archived tournament or alters its snapshot."""
        if collection != CollectionName.TOURNAMENTS:
            return
        row = self._find_row(collection, record_id)
        if row is None:
            return
        stored = json.loads(row[1])
        if stored.get("status") != TournamentStatus.ARCHIVED:
            return
        if record.get("status") != stored["status"] or record.get("archivedData") != stored.get("archivedData"):
            raise ArchivedRecordError(f"Tournament {record_id} is archived and cannot be changed")

    def _write(self, spec: CollectionSpec, record: dict[str, Any]) -> None:
        record_id = str(record.get("id") or record[spec.key_field])
        self.connection.execute(
            "INSERT INTO records (collection, id, key, tournament_id, data) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(collection, id) DO UPDATE SET "
            "key = excluded.key, tournament_id = excluded.tournament_id, data = excluded.data",
            (
                spec.name.value,
                record_id,
                str(record[spec.key_field]),
                record.get("tournamentId"),
                json.dumps(record),
            ),
        )

    async def create(self, collection: CollectionName, data: dict[str, Any]) -> dict[str, Any]:
        """Insert or overwrite a record. Re-sending the same record is harmless.

        Teams are the exception: a second team with an access code already in
        use under another id is rejected with DuplicateRecordError. An archived
        tournament keeps its status and archivedData; changing either raises
        ArchivedRecordError.
        """
        spec = COLLECTION_SPECS[collection]
        record = self._validate(spec, data)
        async with self._lock:
            if collection == CollectionName.TEAMS:
                row = self._find_row(collection, record["code"])
                if row is not None and row[0] != record["id"]:
                    raise DuplicateRecordError(f"Team code {record['code']} is already in use")
            self._check_archived(collection, str(record.get("id", "")), record)
            self._write(spec, record)
            self.connection.commit()
        return record

    async def update(self, collection: CollectionName, id_or_key: str, data: dict[str, Any]) -> dict[str, Any]:
        spec = COLLECTION_SPECS[collection]
        async with self._lock:
            row = self._find_row(collection, id_or_key)
            if row is None:
                raise RecordNotFoundError(f"{spec.entity} {id_or_key} not found")
            existing_id = row[0]
            record = self._validate(spec, {**data, "id": data.get("id") or existing_id})
            if record.get("id") != existing_id:
                # The row keeps its address; a changed id in the body is ignored.
                record["id"] = existing_id
            self._check_archived(collection, existing_id, record)
            self._write(spec, record)
            self.connection.commit()
        return record

    async def get(self, collection: CollectionName, id_or_key: str) -> dict[str, Any] | None:
        async with self._lock:
            row = self._find_row(collection, id_or_key)
        return None if row is None else json.loads(row[1])

    async def list(
        self,
        collection: CollectionName,
        tournament_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        clauses = ["collection = ?"]
        params: list[Any] = [collection.value]
        if tournament_id is not None:
            clauses.append("tournament_id = ?")
            params.append(tournament_id)

        order = "rowid ASC"
        if collection == CollectionName.AUDIT_LOGS:
            order = "json_extract(data, '$.timestamp') DESC, rowid DESC"
        sql = f"SELECT data FROM records WHERE {' AND '.join(clauses)} ORDER BY {order}"  # noqa: S608
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        async with self._lock:
            rows = self.connection.execute(sql, params).fetchall()
        return [json.loads(row[0]) for row in rows]

    async def delete(self, collection: CollectionName, id_or_key: str) -> dict[str, Any]:
        spec = COLLECTION_SPECS[collection]
        async with self._lock:
            row = self._find_row(collection, id_or_key)
            if row is None:
                raise RecordNotFoundError(f"{spec.entity} {id_or_key} not found")
            self.connection.execute(
                "DELETE FROM records WHERE collection = ? AND id = ?",
                (collection.value, row[0]),
            )
            self.connection.commit()
        return json.loads(row[1])

    async def delete_tournament(self, tournament_id: str) -> dict[CollectionName, list[dict[str, Any]]]:
        """Delete a tournament and every record it owns. Return the removed records by collection."""
        removed: dict[CollectionName, list[dict[str, Any]]] = {}
        async with self._lock:
            row = self._find_row(CollectionName.TOURNAMENTS, tournament_id)
            if row is None:
                raise RecordNotFoundError(f"tournament {tournament_id} not found")
            conn = self.connection
            try:
                for collection in TOURNAMENT_OWNED:
                    rows = conn.execute(
                        "SELECT data FROM records WHERE collection = ? AND tournament_id = ?",
                        (collection.value, row[0]),
                    ).fetchall()
                    removed[collection] = [json.loads(r[0]) for r in rows]
                    conn.execute(
                        "DELETE FROM records WHERE collection = ? AND tournament_id = ?",
                        (collection.value, row[0]),
                    )
                conn.execute(
                    "DELETE FROM records WHERE collection = ? AND id = ?",
                    (CollectionName.TOURNAMENTS.value, row[0]),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        removed[CollectionName.TOURNAMENTS] = [json.loads(row[1])]
        logger.info(
            "tournament deleted",
            tournament_id=tournament_id,
            removed={c.value: len(r) for c, r in removed.items()},
        )
        return removed
