import asyncio
import json
from types import SimpleNamespace

import aiohttp
import pytest

from shared.errors import ChannelError
from sync.channel import CONNECTION_FAILED_MESSAGE, RealtimeChannel


class FakeWebSocket:
    """Stands in for aiohttp.ClientWebSocketResponse: async-iterable frames plus send_str/close."""

    def __init__(self, *frames: str) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.feed(frame)

    def feed(self, raw: str) -> None:
        self._queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=raw))

    def drop(self) -> None:
        self._queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None))

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    async def send_str(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        return item


def _connector(*sockets: FakeWebSocket):
    remaining = list(sockets)
    calls: list[str] = []

    async def connect(url: str):
        calls.append(url)
        if not remaining:
            raise ChannelError("connection refused")
        return remaining.pop(0)

    connect.calls = calls
    connect.remaining = remaining
    return connect


def _channel(connect, attempts: int = 1) -> RealtimeChannel:
    return RealtimeChannel("http://hub.test/", reconnect_attempts=attempts, reconnect_delay=0, connect=connect)


class TestBackoff:
    def test_doubles_up_to_max(self):
        channel = RealtimeChannel("http://hub.test", reconnect_delay=2.0, reconnect_delay_max=5.0)
        assert [channel.backoff(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]

    def test_ws_url(self):
        assert RealtimeChannel("http://hub.test/").url == "http://hub.test/ws"


class TestConnection:
    @pytest.mark.asyncio
    async def test_gives_up_after_bounded_attempts(self):
        connect = _connector()
        channel = _channel(connect, attempts=3)

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert len(connect.calls) == 3
        assert connect.calls[0] == "http://hub.test/ws"
        assert channel.connection_error == CONNECTION_FAILED_MESSAGE
        assert not channel.is_connected

    @pytest.mark.asyncio
    async def test_status_reported_on_connect_and_drop(self):
        ws = FakeWebSocket()
        ws.drop()
        channel = _channel(_connector(ws))
        statuses = []
        channel.on_status(statuses.append)

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert statuses == [True, False]

    @pytest.mark.asyncio
    async def test_reconnects_after_drop_and_rejoins(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        first.drop()
        second.drop()
        channel = _channel(_connector(first, second))
        await channel.join("t-2")
        await channel.join("t-1")

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        expected = [{"action": "join", "tournamentId": "t-1"}, {"action": "join", "tournamentId": "t-2"}]
        assert first.sent == expected
        assert second.sent == expected
        assert channel.joined == {"t-1", "t-2"}

    @pytest.mark.asyncio
    async def test_read_error_is_logged_and_reconnects(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        first.fail(RuntimeError("frame decode failed"))
        second.drop()
        connect = _connector(first, second)
        channel = _channel(connect)
        statuses = []
        channel.on_status(statuses.append)

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert len(connect.calls) == 3
        assert statuses == [True, False, True, False]
        assert channel.connection_error == CONNECTION_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_start_after_giving_up_opens_a_new_loop(self):
        connect = _connector()
        channel = _channel(connect)
        statuses = []
        channel.on_status(statuses.append)
        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        ws = FakeWebSocket()
        ws.drop()
        connect.remaining.append(ws)
        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert len(connect.calls) == 3
        assert statuses == [True, False]

    @pytest.mark.asyncio
    async def test_join_while_connected_is_sent_immediately(self):
        ws = FakeWebSocket()
        channel = _channel(_connector(ws))
        connected = asyncio.Event()
        channel.on_status(lambda up: connected.set() if up else None)

        channel.start()
        await asyncio.wait_for(connected.wait(), timeout=1)
        await channel.join("t-1")

        assert ws.sent == [{"action": "join", "tournamentId": "t-1"}]
        await channel.stop()
        assert ws.closed
        assert not channel.is_connected

    @pytest.mark.asyncio
    async def test_join_while_offline_is_remembered_only(self):
        channel = _channel(_connector())
        await channel.join("t-1")
        assert channel.joined == {"t-1"}


class TestDispatch:
    @pytest.mark.asyncio
    async def test_frames_reach_handlers_by_event_name(self):
        ws = FakeWebSocket(
            json.dumps({"event": "teamCreated", "data": {"team": {"code": "ABC123"}}}),
            json.dumps({"event": "matchDeleted", "data": {"matchId": "m-1"}}),
        )
        ws.drop()
        channel = _channel(_connector(ws))
        teams, matches = [], []
        channel.on("teamCreated", teams.append)
        channel.on("matchDeleted", matches.append)

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert teams == [{"team": {"code": "ABC123"}}]
        assert matches == [{"matchId": "m-1"}]

    @pytest.mark.asyncio
    async def test_malformed_frames_are_skipped(self):
        ws = FakeWebSocket(
            "not json",
            json.dumps(["no", "event"]),
            json.dumps({"data": {}}),
            json.dumps({"event": "teamCreated", "data": "not an object"}),
        )
        ws.drop()
        channel = _channel(_connector(ws))
        seen = []
        channel.on("teamCreated", seen.append)

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert seen == [{}]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        ws = FakeWebSocket(json.dumps({"event": "teamUpdated", "data": {"team": {}}}))
        ws.drop()
        channel = _channel(_connector(ws))
        seen = []

        def broken(_payload):
            raise RuntimeError("handler bug")

        channel.on("teamUpdated", broken)
        channel.on("teamUpdated", seen.append)

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert seen == [{"team": {}}]

    @pytest.mark.asyncio
    async def test_off_removes_handler(self):
        ws = FakeWebSocket(json.dumps({"event": "teamCreated", "data": {}}))
        ws.drop()
        channel = _channel(_connector(ws))
        seen = []
        channel.on("teamCreated", seen.append)
        channel.off("teamCreated", seen.append)
        channel.off("unknownEvent", seen.append)

        channel.start()
        await asyncio.wait_for(channel.wait_closed(), timeout=1)

        assert seen == []
