"""Tournament domain records.

Records are immutable: every change produces a new instance that replaces
the old one wholesale under the same key. Field names are snake_case in
Python and camelCase on the wire (hub payloads and cache snapshots).
"""

from __future__ import annotations

import secrets
import time
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from shared.errors import ValidationError


class TournamentFormat(StrEnum):
    ROUND_BASED = "round-based"
    BATTLE_ROYALE = "battle-royale"


class TournamentStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class MatchStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AdjustmentCategory(StrEnum):
    PENALTY = "penalty"
    REWARD = "reward"
    DISQUALIFICATION = "disqualification"


class ActorRole(StrEnum):
    ADMIN = "admin"
    MANAGER = "manager"
    TEAM = "team"


def now_ms() -> int:
    """Wall-clock time in integer milliseconds, the unit used by every record timestamp."""
    return int(time.time() * 1000)


def new_record_id(prefix: str) -> str:
    return f"{prefix}-{now_ms()}-{secrets.token_hex(4)}"


class Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to the camelCase JSON-compatible shape used on the wire and in the cache."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Team(Record):
    id: str
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)  # access code, unique across all teams
    tournament_id: str
    lobby: int | None = None
    slot: int | None = None
    created_at: int = Field(default_factory=now_ms)


class Match(Record):
    id: str
    team_code: str
    position: int = Field(ge=1)
    kills: int = Field(ge=0)
    score: float | None = None  # fixed at approval time; None means not yet scored
    status: MatchStatus = MatchStatus.APPROVED
    tournament_id: str
    submitted_at: int = Field(default_factory=now_ms)
    reviewed_at: int | None = None
    reviewed_by: str | None = None
    match_number: int | None = None
    photos: tuple[str, ...] = ()


class PendingSubmission(Record):
    id: str
    team_code: str
    team_name: str
    position: int = Field(ge=1)
    kills: int = Field(ge=0)
    tournament_id: str
    submitted_at: int = Field(default_factory=now_ms)
    photos: tuple[str, ...] = ()


class ScoreAdjustment(Record):
    id: str
    team_code: str
    team_name: str = ""
    points: float  # signed delta applied to the final score
    reason: str = ""
    category: AdjustmentCategory = AdjustmentCategory.PENALTY
    applied_by: str = "admin"
    applied_at: int = Field(default_factory=now_ms)
    tournament_id: str


class Manager(Record):
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    id: str | None = None
    is_active: bool = True
    permissions: tuple[str, ...] = ()
    created_by: str = "admin"
    created_at: int = Field(default_factory=now_ms)


class AuditLog(Record):
    id: str
    action: str
    details: str
    performed_by: str
    performed_by_type: ActorRole
    timestamp: int = Field(default_factory=now_ms)
    tournament_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class TournamentSettings(Record):
    lobbies: int = Field(default=1, ge=1)
    slots_per_lobby: int = Field(default=25, ge=1)
    total_matches: int = Field(default=4, ge=1)
    counted_matches: int = Field(default=3, ge=1)
    multipliers: dict[int, float] | None = None  # position -> multiplier override

    @model_validator(mode="after")
    def _validate_counted_matches(self) -> Self:
        if self.counted_matches > self.total_matches:
            raise ValueError(
                f"countedMatches ({self.counted_matches}) must not exceed totalMatches ({self.total_matches})",
            )
        return self


class ArchivedData(Record):
    """Read-only snapshot of a tournament's operational records at termination time."""

    teams: tuple[Team, ...] = ()
    matches: tuple[Match, ...] = ()
    adjustments: tuple[ScoreAdjustment, ...] = ()
    pending_submissions: tuple[PendingSubmission, ...] = ()
    archived_at: int = Field(default_factory=now_ms)


class Tournament(Record):
    id: str
    name: str = Field(min_length=1)
    variant: TournamentFormat = Field(default=TournamentFormat.ROUND_BASED, alias="type")
    status: TournamentStatus = TournamentStatus.ACTIVE
    start_date: str | None = None
    start_time: str | None = None
    end_date: str | None = None
    created_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None
    settings: TournamentSettings = Field(default_factory=TournamentSettings)
    assigned_managers: tuple[str, ...] = ()
    archived_data: ArchivedData | None = None

    @property
    def is_active(self) -> bool:
        return self.status == TournamentStatus.ACTIVE

    def archive(self, snapshot: ArchivedData, at: int | None = None) -> Tournament:
        """Return the archived copy of this tournament carrying an immutable snapshot.

        Archiving is one-way: an already archived tournament keeps its
        original snapshot and the call is rejected.
        """
        if self.status == TournamentStatus.ARCHIVED:
            raise ValidationError(f"Tournament {self.id} is already archived")
        return self.model_copy(
            update={
                "status": TournamentStatus.ARCHIVED,
                "archived_data": snapshot,
                "completed_at": at if at is not None else now_ms(),
            },
        )

    def complete(self) -> Tournament:
        if self.status != TournamentStatus.ACTIVE:
            raise ValidationError(f"Tournament {self.id} is {self.status}, only active tournaments can complete")
        return self.model_copy(update={"status": TournamentStatus.COMPLETED, "completed_at": now_ms()})
