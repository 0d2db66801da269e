"""Same-device fan-out between execution contexts.

A BroadcastBus stands for one device. Each context opens its own
BroadcastChannel by name; a message posted on one channel instance is
delivered to every other open instance with the same name, never back to
the poster. Delivery is scheduled on the event loop (so a post never runs
receiver code synchronously), ordered per poster and best-effort: nothing
survives a context restart, the local cache is the durability layer.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    BroadcastHandler = Callable[[dict[str, Any]], None]

logger = structlog.get_logger()

GLOBAL_CHANNEL = "global-sync"

# Session-control message types carried on the global channel.
TOURNAMENT_CREATED = "tournament-created"
TOURNAMENT_TERMINATED = "tournament-terminated"
TOURNAMENT_DELETED = "tournament-deleted-permanently"
TEAM_CREATED = "team-created"

# Per-collection message types.
DATA_UPDATE = "data-update"
ENTITY_CREATED = "entity-created"
ENTITY_UPDATED = "entity-updated"
ENTITY_DELETED = "entity-deleted"


def collection_channel_name(collection: str) -> str:
    return f"data-sync-{collection}"


def data_update_message(key: str, value: Any) -> dict[str, Any]:  # noqa: ANN401
    """Full-snapshot replacement for one collection."""
    return {"type": DATA_UPDATE, "key": key, "value": value}


def entity_message(message_type: str, collection: str, key: str, value: Any = None) -> dict[str, Any]:  # noqa: ANN401
    message: dict[str, Any] = {"type": message_type, "collection": collection, "key": key}
    if value is not None:
        message["value"] = value
    return message


class BroadcastBus:
    """Registry of open channel instances for one device."""

    def __init__(self) -> None:
        self._channels: dict[str, list[BroadcastChannel]] = {}  # name -> open instances

    def channel(self, name: str) -> BroadcastChannel:
        return BroadcastChannel(self, name)

    def _attach(self, channel: BroadcastChannel) -> None:
        self._channels.setdefault(channel.name, []).append(channel)

    def _detach(self, channel: BroadcastChannel) -> None:
        instances = self._channels.get(channel.name)
        if instances is None:
            return
        with contextlib.suppress(ValueError):
            instances.remove(channel)
        if not instances:
            del self._channels[channel.name]

    def _fan_out(self, sender: BroadcastChannel, message: dict[str, Any]) -> int:
        """Schedule delivery to every instance except sender. Return the number of receivers."""
        receivers = [ch for ch in self._channels.get(sender.name, []) if ch is not sender]
        if not receivers:
            return 0
        loop = asyncio.get_running_loop()
        for receiver in receivers:
            # Each receiver gets its own copy so no context can mutate another's state.
            loop.call_soon(receiver._deliver, copy.deepcopy(message))
        return len(receivers)

    def open_count(self, name: str) -> int:
        return len(self._channels.get(name, []))


class BroadcastChannel:
    def __init__(self, bus: BroadcastBus, name: str) -> None:
        self._bus = bus
        self._name = name
        self._handlers: list[BroadcastHandler] = []
        self._closed = False
        bus._attach(self)

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: dict[str, Any]) -> int:
        """Publish message to every other open instance of this channel.

        Must be called from within a running event loop. Posting on a closed
        channel is a no-op.
        """
        if self._closed:
            logger.debug("post on closed channel ignored", channel=self._name)
            return 0
        return self._bus._fan_out(self, message)

    def subscribe(self, handler: BroadcastHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._handlers.remove(handler)

        return unsubscribe

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()
        self._bus._detach(self)

    def _deliver(self, message: dict[str, Any]) -> None:
        if self._closed:
            return
        for handler in list(self._handlers):
            try:
                handler(message)
            except Exception:
                logger.exception("broadcast handler failed", channel=self._name, message_type=message.get("type"))
