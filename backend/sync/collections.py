"""Per-collection strategies for the reactive data binders.

Each tracked collection is described once by a CollectionSpec: how its
records are keyed, whether its in-memory state is a map or an ordered list,
which real-time events concern it and how a delete event names the removed
record. Binders pick their spec at construction and never re-dispatch on the
collection name afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from shared.audit import AUDIT_LOG_LIMIT
from shared.records import (
    AuditLog,
    Manager,
    Match,
    PendingSubmission,
    Record,
    ScoreAdjustment,
    Team,
    Tournament,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

logger = structlog.get_logger()

# In-memory state of one collection: key -> record, or records in display order.
CollectionState = dict[str, Record] | list[Record]


class CollectionName(StrEnum):
    TOURNAMENTS = "tournaments"
    TEAMS = "teams"
    MATCHES = "matches"
    PENDING_SUBMISSIONS = "pendingSubmissions"
    SCORE_ADJUSTMENTS = "scoreAdjustments"
    MANAGERS = "managers"
    AUDIT_LOGS = "auditLogs"


class Shape(StrEnum):
    MAP = "map"
    LIST = "list"


class EventKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"

    @property
    def suffix(self) -> str:
        return self.value.capitalize()

    @property
    def message_type(self) -> str:
        """Sibling-context broadcast type, e.g. "entity-created"."""
        return f"entity-{self.value}"


@dataclass(frozen=True)
class CollectionSpec:
    name: CollectionName
    entity: str  # singular wire name, e.g. "team"
    model: type[Record]
    shape: Shape
    key_field: str = "id"
    delete_key: str = ""  # payload field naming the removed record on delete events
    prepend: bool = False
    limit: int | None = None

    def empty(self) -> CollectionState:
        return {} if self.shape == Shape.MAP else []

    def key_of(self, record: Record) -> str:
        return str(getattr(record, self.key_field))

    def records(self, state: CollectionState) -> Iterator[Record]:
        if isinstance(state, dict):
            yield from state.values()
        else:
            yield from state

    def parse_record(self, data: Mapping[str, Any]) -> Record:
        """Validate a wire payload into a record, mapping a store-assigned _id onto id."""
        payload = dict(data)
        if "_id" in payload and not payload.get("id"):
            payload["id"] = str(payload["_id"])
        payload.pop("_id", None)
        return self.model.model_validate(payload)

    def normalize(self, items: Iterable[Mapping[str, Any]]) -> CollectionState:
        """Build collection state from wire records in their given order, skipping invalid entries.

        A key seen twice keeps its first position and its last value.
        """
        records: list[Record] = []
        for item in items:
            try:
                records.append(self.parse_record(item))
            except PydanticValidationError as e:
                logger.warning("skipping invalid record", collection=self.name, error=str(e))

        if self.shape == Shape.MAP:
            return {self.key_of(record): record for record in records}

        positions: dict[str, int] = {}
        ordered: list[Record] = []
        for record in records:
            key = self.key_of(record)
            if key in positions:
                ordered[positions[key]] = record
            else:
                positions[key] = len(ordered)
                ordered.append(record)
        return ordered if self.limit is None else ordered[: self.limit]

    def load(self, snapshot: Any) -> CollectionState:  # noqa: ANN401
        """Rebuild state from a cached snapshot (map or list shaped)."""
        if isinstance(snapshot, dict):
            return self.normalize(snapshot.values())
        if isinstance(snapshot, list):
            return self.normalize(snapshot)
        return self.empty()

    def dump(self, state: CollectionState) -> dict[str, Any] | list[dict[str, Any]]:
        if isinstance(state, dict):
            return {key: record.to_wire() for key, record in state.items()}
        return [record.to_wire() for record in state]

    def upsert(self, state: CollectionState, record: Record) -> CollectionState:
        """Return new state with record inserted or replaced under its key."""
        key = self.key_of(record)
        if isinstance(state, dict):
            return {**state, key: record}

        for index, existing in enumerate(state):
            if self.key_of(existing) == key:
                return [*state[:index], record, *state[index + 1 :]]
        updated = [record, *state] if self.prepend else [*state, record]
        if self.limit is not None:
            updated = updated[: self.limit]
        return updated

    def remove(self, state: CollectionState, key: str) -> CollectionState:
        """Return new state without the record under key. Unknown keys leave state unchanged."""
        if isinstance(state, dict):
            if key not in state:
                return state
            return {k: v for k, v in state.items() if k != key}
        remaining = [record for record in state if self.key_of(record) != key]
        return state if len(remaining) == len(state) else remaining

    def retain(self, state: CollectionState, keep: Any) -> CollectionState:  # noqa: ANN401
        """Return new state holding only records for which keep(record) is true."""
        if isinstance(state, dict):
            return {k: v for k, v in state.items() if keep(v)}
        return [record for record in state if keep(record)]

    def event_names(self, kind: EventKind) -> tuple[str, str]:
        """Collection-scoped event name and its legacy unscoped alias."""
        return f"{self.name}{kind.suffix}", f"{self.entity}{kind.suffix}"

    def record_from_payload(self, payload: Mapping[str, Any]) -> Record | None:
        data = payload.get(self.entity)
        if not isinstance(data, dict):
            return None
        try:
            return self.parse_record(data)
        except PydanticValidationError as e:
            logger.warning("ignoring invalid event record", collection=self.name, error=str(e))
            return None

    def key_from_payload(self, payload: Mapping[str, Any]) -> str | None:
        key = payload.get(self.delete_key)
        if key is not None:
            return str(key)
        data = payload.get(self.entity)
        if isinstance(data, dict) and data.get(self.key_field) is not None:
            return str(data[self.key_field])
        return None


TOURNAMENTS = CollectionSpec(
    name=CollectionName.TOURNAMENTS,
    entity="tournament",
    model=Tournament,
    shape=Shape.MAP,
    delete_key="tournamentId",
)
TEAMS = CollectionSpec(
    name=CollectionName.TEAMS,
    entity="team",
    model=Team,
    shape=Shape.MAP,
    key_field="code",
    delete_key="teamCode",
)
MATCHES = CollectionSpec(
    name=CollectionName.MATCHES,
    entity="match",
    model=Match,
    shape=Shape.LIST,
    delete_key="matchId",
)
PENDING_SUBMISSIONS = CollectionSpec(
    name=CollectionName.PENDING_SUBMISSIONS,
    entity="pendingSubmission",
    model=PendingSubmission,
    shape=Shape.LIST,
    delete_key="pendingSubmissionId",
)
SCORE_ADJUSTMENTS = CollectionSpec(
    name=CollectionName.SCORE_ADJUSTMENTS,
    entity="scoreAdjustment",
    model=ScoreAdjustment,
    shape=Shape.LIST,
    delete_key="scoreAdjustmentId",
)
MANAGERS = CollectionSpec(
    name=CollectionName.MANAGERS,
    entity="manager",
    model=Manager,
    shape=Shape.MAP,
    key_field="code",
    delete_key="managerCode",
)
AUDIT_LOGS = CollectionSpec(
    name=CollectionName.AUDIT_LOGS,
    entity="auditLog",
    model=AuditLog,
    shape=Shape.LIST,
    delete_key="auditLogId",
    prepend=True,
    limit=AUDIT_LOG_LIMIT,
)

# Collections whose records belong to one tournament and go with it.
TOURNAMENT_OWNED = (
    CollectionName.TEAMS,
    CollectionName.MATCHES,
    CollectionName.PENDING_SUBMISSIONS,
    CollectionName.SCORE_ADJUSTMENTS,
)

COLLECTION_SPECS: dict[CollectionName, CollectionSpec] = {
    spec.name: spec
    for spec in (TOURNAMENTS, TEAMS, MATCHES, PENDING_SUBMISSIONS, SCORE_ADJUSTMENTS, MANAGERS, AUDIT_LOGS)
}
