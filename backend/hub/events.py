"""WebSocket fan-out of record lifecycle events."""

from __future__ import annotations

import contextlib
import json
from typing import TYPE_CHECKING, Any

import structlog

from sync.collections import COLLECTION_SPECS, TOURNAMENT_OWNED, EventKind

if TYPE_CHECKING:
    from starlette.websockets import WebSocket

    from sync.collections import CollectionName

logger = structlog.get_logger()

# Joining this group receives every tournament's events.
ALL_TOURNAMENTS = "all"


class EventHub:
    """Track WebSocket connections and the tournament groups each one joined."""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}  # conn_id -> ws
        self._groups: dict[str, set[str]] = {}  # conn_id -> joined tournament ids

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def add(self, connection_id: str, websocket: WebSocket) -> None:
        self._connections[connection_id] = websocket
        self._groups[connection_id] = set()

    def remove(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        self._groups.pop(connection_id, None)

    def join(self, connection_id: str, tournament_id: str) -> bool:
        groups = self._groups.get(connection_id)
        if groups is None:
            return False
        groups.add(tournament_id)
        return True

    def groups_of(self, connection_id: str) -> frozenset[str]:
        return frozenset(self._groups.get(connection_id, ()))

    def audience(self, tournament_id: str | None) -> list[str]:
        """Connection ids that should receive an event about tournament_id (None means everyone)."""
        if tournament_id is None:
            return list(self._connections)
        return [
            conn_id
            for conn_id, groups in self._groups.items()
            if tournament_id in groups or ALL_TOURNAMENTS in groups
        ]

    async def send(self, event: str, data: dict[str, Any], tournament_id: str | None = None) -> int:
        """Send one event frame to its audience. Return the number of connections reached."""
        payload = json.dumps({"event": event, "data": data})
        sent = 0
        for conn_id in self.audience(tournament_id):
            ws = self._connections.get(conn_id)
            if ws is None:
                continue
            with contextlib.suppress(ConnectionError, RuntimeError):
                await ws.send_text(payload)
                sent += 1
        return sent

    async def publish(self, collection: CollectionName, kind: EventKind, record: dict[str, Any]) -> None:
        """Announce a record change under its collection-scoped and legacy event names."""
        spec = COLLECTION_SPECS[collection]
        if kind == EventKind.DELETED:
            data: dict[str, Any] = {spec.delete_key: record.get(spec.key_field)}
        else:
            data = {spec.entity: record}

        tournament_id = record.get("tournamentId") if collection in TOURNAMENT_OWNED else None
        for event in spec.event_names(kind):
            await self.send(event, data, tournament_id)
        logger.debug("event published", collection=collection, kind=kind, tournament_id=tournament_id)
