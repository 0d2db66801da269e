"""WebSocket endpoint of the hub's real-time event channel."""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

if TYPE_CHECKING:
    from hub.events import EventHub

logger = structlog.get_logger()


async def events_websocket(websocket: WebSocket) -> None:
    """Accept a client, then handle `join` frames until it disconnects."""
    await websocket.accept()
    hub: EventHub = websocket.app.state.event_hub
    connection_id = str(uuid.uuid4())
    hub.add(connection_id, websocket)
    log = logger.bind(connection_id=connection_id)
    log.info("event client connected", connections=hub.connection_count)

    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_frame(websocket, hub, connection_id, raw)
    except WebSocketDisconnect:
        pass
    except Exception:  # pragma: no cover
        log.exception("unexpected error in event websocket")
    finally:
        hub.remove(connection_id)
        log.info("event client disconnected", connections=hub.connection_count)


async def _handle_frame(websocket: WebSocket, hub: EventHub, connection_id: str, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except ValueError:
        await websocket.send_json({"event": "error", "data": {"message": "invalid_json"}})
        return

    if not isinstance(frame, dict):
        await websocket.send_json({"event": "error", "data": {"message": "invalid_frame"}})
        return

    action = frame.get("action")
    if action == "join":
        tournament_id = frame.get("tournamentId")
        if not isinstance(tournament_id, str) or not tournament_id:
            await websocket.send_json({"event": "error", "data": {"message": "missing_tournament_id"}})
            return
        hub.join(connection_id, tournament_id)
        logger.debug("client joined tournament", connection_id=connection_id, tournament_id=tournament_id)
        await websocket.send_json({"event": "joined", "data": {"tournamentId": tournament_id}})
    elif action == "ping":
        await websocket.send_json({"event": "pong", "data": {}})
    else:
        await websocket.send_json({"event": "error", "data": {"message": "unknown_action"}})
