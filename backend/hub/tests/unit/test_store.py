import os
import stat

import pytest

from hub.store import ArchivedRecordError, DuplicateRecordError, RecordNotFoundError, RecordStore
from shared.errors import ValidationError
from sync.collections import CollectionName


def _team(code: str, tournament_id: str = "t-1", record_id: str | None = None, name: str = "Night Owls") -> dict:
    return {"id": record_id or f"{tournament_id}-{code}", "name": name, "code": code, "tournamentId": tournament_id}


def _match(match_id: str, tournament_id: str = "t-1") -> dict:
    return {"id": match_id, "teamCode": "ABC123", "position": 1, "kills": 3, "tournamentId": tournament_id}


@pytest.fixture
def store():
    s = RecordStore(":memory:")
    s.connect()
    yield s
    s.close()


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_normalizes_and_returns_record(self, store):
        record = await store.create(CollectionName.TEAMS, {**_team("ABC123"), "color": "red"})

        assert record["code"] == "ABC123"
        assert "color" not in record
        assert "createdAt" in record
        assert await store.get(CollectionName.TEAMS, "t-1-ABC123") == record

    @pytest.mark.asyncio
    async def test_invalid_record_rejected(self, store):
        with pytest.raises(ValidationError, match="Invalid match"):
            await store.create(CollectionName.MATCHES, {"id": "m-1", "teamCode": "ABC123", "position": 0})

    @pytest.mark.asyncio
    async def test_resend_is_idempotent(self, store):
        await store.create(CollectionName.TEAMS, _team("ABC123"))
        await store.create(CollectionName.TEAMS, _team("ABC123", name="Renamed"))

        teams = await store.list(CollectionName.TEAMS)
        assert len(teams) == 1
        assert teams[0]["name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_duplicate_team_code_rejected(self, store):
        await store.create(CollectionName.TEAMS, _team("ABC123"))

        with pytest.raises(DuplicateRecordError, match="ABC123"):
            await store.create(CollectionName.TEAMS, _team("ABC123", tournament_id="t-2"))

    @pytest.mark.asyncio
    async def test_store_id_accepted(self, store):
        record = await store.create(CollectionName.MATCHES, {**_match(""), "_id": "db-7"})
        assert record["id"] == "db-7"

    @pytest.mark.asyncio
    async def test_manager_keyed_by_code_without_id(self, store):
        await store.create(CollectionName.MANAGERS, {"code": "MGRABC123", "name": "Sam"})
        assert (await store.get(CollectionName.MANAGERS, "MGRABC123"))["name"] == "Sam"


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_by_id_or_key(self, store):
        await store.create(CollectionName.TEAMS, _team("ABC123"))

        by_id = await store.get(CollectionName.TEAMS, "t-1-ABC123")
        by_code = await store.get(CollectionName.TEAMS, "ABC123")

        assert by_id == by_code

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get(CollectionName.TEAMS, "NOPE") is None

    @pytest.mark.asyncio
    async def test_list_filters_by_tournament_in_insert_order(self, store):
        for match_id, tournament_id in (("m-2", "t-1"), ("m-1", "t-1"), ("m-3", "t-2")):
            await store.create(CollectionName.MATCHES, _match(match_id, tournament_id))

        assert [m["id"] for m in await store.list(CollectionName.MATCHES, "t-1")] == ["m-2", "m-1"]
        assert len(await store.list(CollectionName.MATCHES)) == 3

    @pytest.mark.asyncio
    async def test_audit_logs_newest_first_with_limit(self, store):
        for n in range(5):
            await store.create(
                CollectionName.AUDIT_LOGS,
                {
                    "id": f"audit-{n}",
                    "action": "A",
                    "details": str(n),
                    "performedBy": "admin",
                    "performedByType": "admin",
                    "timestamp": 1000 + n,
                },
            )

        logs = await store.list(CollectionName.AUDIT_LOGS, limit=3)

        assert [log["details"] for log in logs] == ["4", "3", "2"]


class TestUpdateDelete:
    @pytest.mark.asyncio
    async def test_update_keeps_row_address(self, store):
        await store.create(CollectionName.TEAMS, _team("ABC123"))

        record = await store.update(CollectionName.TEAMS, "ABC123", _team("ABC123", record_id="other", name="New"))

        assert record["id"] == "t-1-ABC123"
        assert record["name"] == "New"
        assert len(await store.list(CollectionName.TEAMS)) == 1

    @pytest.mark.asyncio
    async def test_archived_tournament_keeps_status_and_snapshot(self, store):
        archived = {"id": "t-1", "name": "Cup", "status": "archived", "archivedData": {"archivedAt": 1}}
        await store.create(CollectionName.TOURNAMENTS, archived)

        with pytest.raises(ArchivedRecordError):
            await store.update(CollectionName.TOURNAMENTS, "t-1", {**archived, "status": "active"})
        with pytest.raises(ArchivedRecordError):
            await store.update(CollectionName.TOURNAMENTS, "t-1", {**archived, "archivedData": None})
        with pytest.raises(ArchivedRecordError):
            await store.create(CollectionName.TOURNAMENTS, {"id": "t-1", "name": "Cup"})

        record = await store.update(CollectionName.TOURNAMENTS, "t-1", archived)
        assert record["status"] == "archived"
        assert (await store.get(CollectionName.TOURNAMENTS, "t-1"))["archivedData"]["archivedAt"] == 1

    @pytest.mark.asyncio
    async def test_active_tournament_can_be_archived(self, store):
        await store.create(CollectionName.TOURNAMENTS, {"id": "t-1", "name": "Cup"})
        archived = {"id": "t-1", "name": "Cup", "status": "archived"}

        record = await store.update(CollectionName.TOURNAMENTS, "t-1", archived)

        assert record["status"] == "archived"

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.update(CollectionName.TEAMS, "NOPE", _team("NOPE"))

    @pytest.mark.asyncio
    async def test_delete_returns_record(self, store):
        await store.create(CollectionName.MATCHES, _match("m-1"))

        removed = await store.delete(CollectionName.MATCHES, "m-1")

        assert removed["id"] == "m-1"
        assert await store.list(CollectionName.MATCHES) == []
        with pytest.raises(RecordNotFoundError):
            await store.delete(CollectionName.MATCHES, "m-1")

    @pytest.mark.asyncio
    async def test_delete_tournament_cascades(self, store):
        await store.create(CollectionName.TOURNAMENTS, {"id": "t-1", "name": "Cup"})
        await store.create(CollectionName.TOURNAMENTS, {"id": "t-2", "name": "Other"})
        await store.create(CollectionName.TEAMS, _team("ABC123"))
        await store.create(CollectionName.TEAMS, _team("XYZ789", tournament_id="t-2"))
        await store.create(CollectionName.MATCHES, _match("m-1"))

        removed = await store.delete_tournament("t-1")

        assert [t["code"] for t in removed[CollectionName.TEAMS]] == ["ABC123"]
        assert [m["id"] for m in removed[CollectionName.MATCHES]] == ["m-1"]
        assert removed[CollectionName.TOURNAMENTS][0]["id"] == "t-1"
        assert [t["code"] for t in await store.list(CollectionName.TEAMS)] == ["XYZ789"]
        assert await store.get(CollectionName.TOURNAMENTS, "t-1") is None
        assert await store.get(CollectionName.TOURNAMENTS, "t-2") is not None

    @pytest.mark.asyncio
    async def test_delete_unknown_tournament(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.delete_tournament("missing")


class TestFileStore:
    def test_file_permissions(self, tmp_path):
        path = tmp_path / "data" / "hub.sqlite3"
        s = RecordStore(path)
        s.connect()
        try:
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        finally:
            s.close()

    def test_use_before_connect(self):
        with pytest.raises(RuntimeError, match="not connected"):
            _ = RecordStore(":memory:").connection
