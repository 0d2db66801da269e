"""Local-first write path shared by every workflow.

SyncOperations.run applies the in-memory mutation, merges each changed record
into the cached snapshot, announces it to sibling contexts and only then calls
the hub. Merging per record keeps two contexts writing offline from
overwriting each other. A failed remote call degrades the result to "saved
locally, not yet synced"; the local mutation is never rolled back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from shared.errors import CacheError, RemoteError
from sync.broadcast import collection_channel_name, data_update_message, entity_message
from sync.cache import read_snapshot, write_snapshot
from sync.collections import EventKind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from shared.records import Record
    from sync.broadcast import BroadcastBus, BroadcastChannel
    from sync.cache import LocalCacheStore
    from sync.collections import CollectionSpec, CollectionState

logger = structlog.get_logger()


class SyncStatus(StrEnum):
    SYNCED = "synced"
    LOCAL_ONLY = "local-only"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SyncResult:
    success: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EntityChange:
    """One record written to or removed from a collection."""

    spec: CollectionSpec
    kind: EventKind
    key: str
    record: Record | None = None

    @classmethod
    def upsert(cls, spec: CollectionSpec, record: Record, kind: EventKind = EventKind.UPDATED) -> EntityChange:
        return cls(spec, kind, spec.key_of(record), record)

    @classmethod
    def removal(cls, spec: CollectionSpec, key: str) -> EntityChange:
        return cls(spec, EventKind.DELETED, key)

    def apply(self, state: CollectionState) -> CollectionState:
        if self.record is None:
            return self.spec.remove(state, self.key)
        return self.spec.upsert(state, self.record)

    def message(self) -> dict[str, Any]:
        value = None if self.record is None else self.record.to_wire()
        return entity_message(self.kind.message_type, self.spec.name, self.key, value)


def apply_changes(state: CollectionState, changes: Sequence[EntityChange]) -> CollectionState:
    for change in changes:
        state = change.apply(state)
    return state


class SyncOperations:
    def __init__(self, cache: LocalCacheStore, bus: BroadcastBus) -> None:
        self._cache = cache
        self._bus = bus
        self._channels: dict[str, BroadcastChannel] = {}

    @property
    def bus(self) -> BroadcastBus:
        return self._bus

    def _channel(self, key: str) -> BroadcastChannel:
        channel = self._channels.get(key)
        if channel is None:
            channel = self._bus.channel(collection_channel_name(key))
            self._channels[key] = channel
        return channel

    def close(self) -> None:
        for channel in self._channels.values():
            channel.close()
        self._channels.clear()

    async def run(
        self,
        local_update: Callable[[], None],
        remote_call: Callable[[], Awaitable[Any]],
        name: str,
        cache_key: str | None = None,
        cache_value: Any = None,  # noqa: ANN401
        changes: Sequence[EntityChange] = (),
    ) -> SyncResult:
        """Apply local_update, persist and broadcast, then await remote_call.

        changes are merged record by record into the cached snapshot of their
        collection and announced as entity messages. cache_key replaces the
        whole snapshot with cache_value and announces a data update.

        Never raises for remote or cache failures. A failing local_update is
        reported as rejected and nothing else runs.
        """
        try:
            local_update()
        except Exception as e:
            logger.exception("local update failed", operation=name)
            return SyncResult(success=False, error=str(e), details=_details(name, SyncStatus.REJECTED))

        if cache_key is not None:
            self._persist(name, cache_key, cache_value)
        if changes:
            self._merge(name, changes)

        try:
            await remote_call()
        except RemoteError as e:
            logger.warning("remote sync failed", operation=name, error=str(e), status=e.status)
            return SyncResult(
                success=False,
                error=str(e),
                details=_details(name, SyncStatus.LOCAL_ONLY, http_status=e.status),
            )
        except Exception as e:
            logger.exception("remote sync failed unexpectedly", operation=name)
            return SyncResult(success=False, error=str(e), details=_details(name, SyncStatus.LOCAL_ONLY))

        logger.debug("operation synced", operation=name)
        return SyncResult(success=True, details=_details(name, SyncStatus.SYNCED))

    def _persist(self, name: str, cache_key: str, cache_value: Any) -> None:  # noqa: ANN401
        try:
            write_snapshot(self._cache, cache_key, cache_value)
        except CacheError as e:
            logger.warning("cache write failed", operation=name, key=cache_key, error=str(e))
        self._channel(cache_key).post(data_update_message(cache_key, cache_value))

    def _merge(self, name: str, changes: Sequence[EntityChange]) -> None:
        by_collection: dict[str, list[EntityChange]] = {}
        for change in changes:
            by_collection.setdefault(change.spec.name, []).append(change)

        for key, group in by_collection.items():
            spec = group[0].spec
            try:
                snapshot = read_snapshot(self._cache, key)
                state = spec.empty() if snapshot is None else spec.load(snapshot)
                write_snapshot(self._cache, key, spec.dump(apply_changes(state, group)))
            except CacheError as e:
                logger.warning("cache merge failed", operation=name, key=key, error=str(e))
            channel = self._channel(key)
            for change in group:
                channel.post(change.message())


def _details(name: str, status: SyncStatus, http_status: int | None = None) -> dict[str, Any]:
    details: dict[str, Any] = {
        "operation": name,
        "status": status.value,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if http_status is not None:
        details["httpStatus"] = http_status
    return details
