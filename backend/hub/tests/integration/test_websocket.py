"""Integration tests for the hub event WebSocket."""

import json

import pytest
from starlette.testclient import TestClient

from hub.app import create_app
from hub.settings import HubSettings


def _team(code: str, tournament_id: str = "t-1") -> dict:
    return {"id": f"{tournament_id}-{code}", "name": f"Team {code}", "code": code, "tournamentId": tournament_id}


@pytest.fixture
def client(tmp_path):
    settings = HubSettings(database_path=str(tmp_path / "hub.sqlite3"))
    with TestClient(create_app(settings=settings)) as c:
        yield c


def _join(ws, tournament_id: str) -> None:
    ws.send_text(json.dumps({"action": "join", "tournamentId": tournament_id}))
    assert ws.receive_json() == {"event": "joined", "data": {"tournamentId": tournament_id}}


class TestEventWebSocket:
    def test_ping_pong(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text(json.dumps({"action": "ping"}))
            assert ws.receive_json() == {"event": "pong", "data": {}}

    @pytest.mark.parametrize(
        ("frame", "message"),
        [
            ("not json", "invalid_json"),
            ("[1, 2]", "invalid_frame"),
            (json.dumps({"action": "join"}), "missing_tournament_id"),
            (json.dumps({"action": "dance"}), "unknown_action"),
        ],
    )
    def test_bad_frames(self, client, frame, message):
        with client.websocket_connect("/ws") as ws:
            ws.send_text(frame)
            assert ws.receive_json() == {"event": "error", "data": {"message": message}}

    def test_joined_client_receives_team_events(self, client):
        with client.websocket_connect("/ws") as ws:
            _join(ws, "t-1")

            created = client.post("/api/teams", json=_team("ABC123")).json()["team"]

            assert ws.receive_json() == {"event": "teamsCreated", "data": {"team": created}}
            assert ws.receive_json() == {"event": "teamCreated", "data": {"team": created}}

            client.delete("/api/teams/ABC123")

            assert ws.receive_json() == {"event": "teamsDeleted", "data": {"teamCode": "ABC123"}}
            assert ws.receive_json() == {"event": "teamDeleted", "data": {"teamCode": "ABC123"}}

    def test_other_tournaments_are_not_delivered(self, client):
        with client.websocket_connect("/ws") as ws:
            _join(ws, "t-1")

            client.post("/api/teams", json=_team("XYZ789", tournament_id="t-2"))
            client.post("/api/teams", json=_team("ABC123"))

            # The first event seen is the t-1 team; the t-2 create was never sent.
            assert ws.receive_json()["data"]["team"]["code"] == "ABC123"

    def test_all_group_receives_every_tournament(self, client):
        with client.websocket_connect("/ws") as ws:
            _join(ws, "all")

            match = {"id": "m-1", "teamCode": "X", "position": 1, "kills": 0, "tournamentId": "t-9"}
            client.post("/api/matches", json=match)

            assert ws.receive_json()["event"] == "matchesCreated"

    def test_tournament_events_go_to_every_client(self, client):
        with client.websocket_connect("/ws") as ws:
            client.put("/api/tournaments/t-1", json={"name": "Cup"})
            client.post("/api/tournaments", json={"id": "t-1", "name": "Cup"})

            assert ws.receive_json()["event"] == "tournamentsCreated"

    def test_connection_count_in_health(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text(json.dumps({"action": "ping"}))
            ws.receive_json()
            assert client.get("/api/health").json()["connections"] == 1
