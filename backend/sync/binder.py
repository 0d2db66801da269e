"""Reactive per-collection state kept in step with the hub.

A CollectionBinder owns the in-memory state of one collection. It loads
remote-first with a cache fallback, merges push events from the real-time
channel and sibling-context broadcasts, and reconciles against the hub on a
fixed interval. Reconciliation is the only conflict rule: the last full read
replaces whatever is held locally.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from shared.errors import CacheError, RemoteError
from sync.broadcast import (
    DATA_UPDATE,
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_UPDATED,
    collection_channel_name,
    entity_message,
)
from sync.cache import read_snapshot, write_snapshot
from sync.collections import EventKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from shared.records import Record
    from sync.broadcast import BroadcastBus, BroadcastChannel
    from sync.cache import LocalCacheStore
    from sync.channel import RealtimeChannel
    from sync.collections import CollectionSpec, CollectionState
    from sync.gateway import RemoteStoreGateway

    StateListener = Callable[[CollectionState], None]

logger = structlog.get_logger()

DEFAULT_POLL_INTERVAL_SECONDS = 15.0

_MESSAGE_KINDS = {
    ENTITY_CREATED: EventKind.CREATED,
    ENTITY_UPDATED: EventKind.UPDATED,
    ENTITY_DELETED: EventKind.DELETED,
}


@dataclass(frozen=True)
class BinderMeta:
    is_loading: bool = True
    error: str | None = None
    is_online: bool = True
    last_error: str | None = None
    last_synced_at: int | None = None


class CollectionBinder:
    def __init__(
        self,
        spec: CollectionSpec,
        gateway: RemoteStoreGateway,
        cache: LocalCacheStore,
        bus: BroadcastBus,
        channel: RealtimeChannel | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        tournament_id: str | None = None,
    ) -> None:
        self._spec = spec
        self._gateway = gateway
        self._cache = cache
        self._bus = bus
        self._channel = channel
        self._poll_interval = poll_interval
        self._tournament_id = tournament_id

        self._state: CollectionState = spec.empty()
        self._meta = BinderMeta()
        self._listeners: list[StateListener] = []
        self._closed = False
        self._started = False
        self._poll_task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()
        self._broadcast: BroadcastChannel | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._event_handlers: list[tuple[str, Callable[[dict[str, Any]], None]]] = []
        self._channel_dropped = False

    @property
    def spec(self) -> CollectionSpec:
        return self._spec

    @property
    def state(self) -> CollectionState:
        return self._state

    @property
    def meta(self) -> BinderMeta:
        return self._meta

    @property
    def closed(self) -> bool:
        return self._closed

    def records(self) -> list[Record]:
        return list(self._spec.records(self._state))

    def get(self, key: str) -> Record | None:
        if isinstance(self._state, dict):
            return self._state.get(key)
        for record in self._state:
            if self._spec.key_of(record) == key:
                return record
        return None

    def set_state(self, value: CollectionState | Callable[[CollectionState], CollectionState]) -> None:
        """Replace in-memory state with value, or with value(current) when given a function."""
        new_state = value(self._state) if callable(value) else value
        self._replace(new_state)

    def watch(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    async def load(self) -> None:
        """Initial load: hub first, cache when the hub fails or has nothing."""
        self._set_meta(is_loading=True)
        try:
            items = await self._gateway.list(self._spec.name, self._tournament_id, self._spec.limit)
        except RemoteError as e:
            if self._closed:
                return
            logger.warning("remote load failed, using cache", collection=self._spec.name, error=str(e))
            self._mark_offline(str(e))
            self._load_from_cache()
            self._set_meta(is_loading=False)
            return

        if self._closed:
            return
        self._mark_online()
        if items:
            self._replace(self._spec.normalize(items))
            self._persist()
        else:
            self._load_from_cache()
        self._set_meta(is_loading=False)

    async def reconcile(self) -> bool:
        """Re-read the full collection and replace state if it differs. Return True on change."""
        try:
            items = await self._gateway.list(self._spec.name, self._tournament_id, self._spec.limit)
        except RemoteError as e:
            if not self._closed:
                logger.debug("reconcile failed", collection=self._spec.name, error=str(e))
                self._mark_offline(str(e))
            return False

        if self._closed:
            return False
        self._mark_online()
        remote_state = self._spec.normalize(items)
        if self._spec.dump(remote_state) == self._spec.dump(self._state):
            return False

        logger.info("reconciled collection", collection=self._spec.name, records=len(items))
        self._replace(remote_state)
        self._persist()
        return True

    def apply_event(self, kind: EventKind, payload: dict[str, Any]) -> bool:
        """Merge a created/updated/deleted event into state. Return True if state changed."""
        if kind == EventKind.DELETED:
            key = self._spec.key_from_payload(payload)
            if key is None:
                return False
            return self._apply_removal(key)

        record = self._spec.record_from_payload(payload)
        if record is None:
            return False
        return self._apply_upsert(record)

    def publish(self, kind: EventKind, record_or_key: Record | str) -> bool:
        """Apply a change locally and announce it to sibling contexts."""
        if kind == EventKind.DELETED:
            key = record_or_key if isinstance(record_or_key, str) else self._spec.key_of(record_or_key)
            changed = self._apply_removal(key)
            value = None
        else:
            if isinstance(record_or_key, str):
                msg = f"{kind} needs a record, not a key"
                raise TypeError(msg)
            key = self._spec.key_of(record_or_key)
            changed = self._apply_upsert(record_or_key)
            value = record_or_key.to_wire()

        if self._broadcast is not None:
            self._broadcast.post(entity_message(kind.message_type, self._spec.name, key, value))
        return changed

    async def start(self) -> None:
        """Subscribe to broadcast and push sources, load, then begin periodic reconciliation."""
        if self._started:
            return
        self._started = True

        self._broadcast = self._bus.channel(collection_channel_name(self._spec.name))
        self._unsubscribers.append(self._broadcast.subscribe(self._on_broadcast))

        if self._channel is not None:
            for kind in EventKind:
                for event_name in self._spec.event_names(kind):
                    handler = self._make_event_handler(kind)
                    self._channel.on(event_name, handler)
                    self._event_handlers.append((event_name, handler))
            self._unsubscribers.append(self._channel.on_status(self._on_channel_status))

        await self.load()
        if not self._closed:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def close(self) -> None:
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._channel is not None:
            for event_name, handler in self._event_handlers:
                self._channel.off(event_name, handler)
        self._event_handlers.clear()
        if self._broadcast is not None:
            self._broadcast.close()
            self._broadcast = None

        tasks = [t for t in (self._poll_task, *self._pending) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._poll_task = None
        self._pending.clear()
        self._listeners.clear()

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.reconcile()
            except Exception:
                logger.exception("periodic reconcile failed", collection=self._spec.name)

    def _make_event_handler(self, kind: EventKind) -> Callable[[dict[str, Any]], None]:
        def handle(payload: dict[str, Any]) -> None:
            if self._closed:
                return
            if self.apply_event(kind, payload):
                self._persist()

        return handle

    def _on_channel_status(self, connected: bool) -> None:
        if self._closed:
            return
        if not connected:
            self._channel_dropped = True
            return
        if self._channel_dropped or self._meta.error is not None:
            self._channel_dropped = False
            logger.info("realtime channel back, forcing reconcile", collection=self._spec.name)
            task = asyncio.create_task(self.reconcile())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def _on_broadcast(self, message: dict[str, Any]) -> None:
        if self._closed:
            return
        message_type = message.get("type")
        if message_type == DATA_UPDATE:
            if message.get("key") != self._spec.name:
                return
            new_state = self._spec.load(message.get("value"))
            if self._spec.dump(new_state) != self._spec.dump(self._state):
                self._replace(new_state)
            return

        kind = _MESSAGE_KINDS.get(str(message_type))
        if kind is None or message.get("collection") != self._spec.name:
            return
        if kind == EventKind.DELETED:
            key = message.get("key")
            if key is not None:
                self._apply_removal(str(key))
            return
        value = message.get("value")
        if isinstance(value, dict):
            self.apply_event(kind, {self._spec.entity: value})

    def _apply_upsert(self, record: Record) -> bool:
        new_state = self._spec.upsert(self._state, record)
        if self._spec.dump(new_state) == self._spec.dump(self._state):
            return False
        self._replace(new_state)
        return True

    def _apply_removal(self, key: str) -> bool:
        new_state = self._spec.remove(self._state, key)
        if new_state is self._state:
            return False
        self._replace(new_state)
        return True

    def _replace(self, new_state: CollectionState) -> None:
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("state listener failed", collection=self._spec.name)

    def _persist(self) -> None:
        try:
            write_snapshot(self._cache, self._spec.name.value, self._spec.dump(self._state))
        except CacheError as e:
            logger.warning("cache write failed", collection=self._spec.name, error=str(e))

    def _load_from_cache(self) -> None:
        try:
            snapshot = read_snapshot(self._cache, self._spec.name.value)
        except CacheError as e:
            logger.warning("cache read failed", collection=self._spec.name, error=str(e))
            return
        if snapshot is not None:
            self._replace(self._spec.load(snapshot))

    def _mark_online(self) -> None:
        self._set_meta(is_online=True, error=None, last_synced_at=int(time.time() * 1000))

    def _mark_offline(self, error: str) -> None:
        self._set_meta(is_online=False, error=error, last_error=error)

    def _set_meta(self, **changes: Any) -> None:  # noqa: ANN401
        self._meta = dataclasses.replace(self._meta, **changes)
