"""Client side of the hub's real-time event channel.

The channel keeps one WebSocket open to the hub, re-joins every tournament
group it was asked to follow after each reconnect and dispatches incoming
`{"event", "data"}` frames to registered handlers. Reconnection is bounded;
once attempts are exhausted the channel stays offline and binders rely on
periodic reconciliation alone.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import TYPE_CHECKING, Any

import aiohttp
import structlog

from shared.errors import ChannelError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    EventHandler = Callable[[dict[str, Any]], None]
    StatusListener = Callable[[bool], None]
    Connector = Callable[[str], Awaitable[Any]]

logger = structlog.get_logger()

CONNECTION_FAILED_MESSAGE = "Unable to connect to server"


class RealtimeChannel:
    def __init__(
        self,
        url: str,
        reconnect_attempts: int = 3,
        reconnect_delay: float = 2.0,
        reconnect_delay_max: float = 5.0,
        connect: Connector | None = None,
    ) -> None:
        self._ws_url = url.rstrip("/") + "/ws"
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._reconnect_delay_max = reconnect_delay_max
        self._connect = connect or self._aiohttp_connect
        self._session: aiohttp.ClientSession | None = None
        self._ws: Any = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._connected = False
        self._connection_error: str | None = None
        self._joined: set[str] = set()
        self._handlers: dict[str, list[EventHandler]] = {}
        self._status_listeners: list[StatusListener] = []

    @property
    def url(self) -> str:
        return self._ws_url

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def connection_error(self) -> str | None:
        return self._connection_error

    @property
    def joined(self) -> frozenset[str]:
        return frozenset(self._joined)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number attempt (1-based)."""
        return min(self._reconnect_delay * 2 ** (attempt - 1), self._reconnect_delay_max)

    def start(self) -> None:
        if self._task is not None:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._stopping = True
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._set_connected(connected=False)

    async def wait_closed(self) -> None:
        """Wait until the connection loop exits on its own (attempts exhausted)."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def join(self, tournament_id: str) -> None:
        """Follow a tournament's events. Remembered and re-sent after every reconnect."""
        self._joined.add(tournament_id)
        if self._connected:
            await self._send_join(tournament_id)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        with contextlib.suppress(ValueError):
            handlers.remove(handler)
        if not handlers:
            del self._handlers[event]

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._status_listeners.remove(listener)

        return unsubscribe

    async def _aiohttp_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            return await self._session.ws_connect(url, heartbeat=30.0)
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            raise ChannelError(f"websocket connect to {url} failed: {e}") from e

    async def _run(self) -> None:
        try:
            await self._connect_loop()
        finally:
            # A finished loop must not block a later start().
            if self._task is asyncio.current_task():
                self._task = None

    async def _connect_loop(self) -> None:
        failures = 0
        while not self._stopping:
            try:
                ws = await self._connect(self._ws_url)
            except ChannelError as e:
                failures += 1
                self._connection_error = str(e)
                logger.warning("realtime connect failed", url=self._ws_url, attempt=failures, error=str(e))
                if failures >= self._reconnect_attempts:
                    self._connection_error = CONNECTION_FAILED_MESSAGE
                    logger.error("realtime channel giving up", url=self._ws_url, attempts=failures)
                    self._set_connected(connected=False)
                    return
                await asyncio.sleep(self.backoff(failures))
                continue

            failures = 0
            self._ws = ws
            self._connection_error = None
            self._set_connected(connected=True)
            logger.info("realtime channel connected", url=self._ws_url, joined=sorted(self._joined))
            try:
                for tournament_id in sorted(self._joined):
                    await self._send_join(tournament_id)
                await self._read_loop(ws)
            except Exception as e:
                self._connection_error = str(e)
                logger.exception("realtime read failed", url=self._ws_url)
            finally:
                self._ws = None
                self._set_connected(connected=False)

            if self._stopping:
                return
            logger.info("realtime channel disconnected, reconnecting", url=self._ws_url)
            await asyncio.sleep(self.backoff(1))

    async def _read_loop(self, ws: Any) -> None:  # noqa: ANN401
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatch(msg.data)
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break

    async def _send_join(self, tournament_id: str) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.send_str(json.dumps({"action": "join", "tournamentId": tournament_id}))
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            logger.warning("failed to send join", tournament_id=tournament_id, error=str(e))

    def _dispatch(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("ignoring malformed realtime frame")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            logger.warning("ignoring realtime frame without event name")
            return

        event = frame["event"]
        data = frame.get("data")
        payload = data if isinstance(data, dict) else {}
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("realtime handler failed", event_name=event)

    def _set_connected(self, *, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        for listener in list(self._status_listeners):
            try:
                listener(connected)
            except Exception:
                logger.exception("realtime status listener failed")
