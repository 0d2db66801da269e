"""Client-side tournament workflows.

Each workflow validates its input against the current binder state, then
drives one or more local-first writes through SyncOperations and records an
audit log entry. Validation failures raise ValidationError before anything
is mutated; sync failures after that point are reported in the returned
WorkflowResult and never undo the local change.
"""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

import structlog

from shared.audit import AUDIT_LOG_LIMIT, append_audit_log, create_audit_log
from shared.codes import MANAGER_CODE_PREFIX, generate_unique_code
from shared.errors import RemoteError, ValidationError
from shared.records import (
    ActorRole,
    AdjustmentCategory,
    ArchivedData,
    Manager,
    Match,
    MatchStatus,
    PendingSubmission,
    ScoreAdjustment,
    Team,
    Tournament,
    TournamentFormat,
    TournamentSettings,
    new_record_id,
    now_ms,
)
from standings.engine import score_match
from sync.broadcast import GLOBAL_CHANNEL, TEAM_CREATED, TOURNAMENT_CREATED, TOURNAMENT_DELETED, TOURNAMENT_TERMINATED
from sync.collections import TOURNAMENT_OWNED, CollectionName, EventKind
from sync.operations import EntityChange, SyncResult, apply_changes

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence

    from shared.records import Record
    from sync.binder import CollectionBinder
    from sync.broadcast import BroadcastChannel
    from sync.gateway import RemoteStoreGateway
    from sync.operations import SyncOperations

logger = structlog.get_logger()

# Registrations retried when the hub reports the generated code as taken.
_TEAM_CODE_ATTEMPTS = 3


@dataclass(frozen=True)
class WorkflowResult:
    sync: SyncResult
    record: Record | None = None

    @property
    def success(self) -> bool:
        return self.sync.success

    @property
    def error(self) -> str | None:
        return self.sync.error


def _combine(results: Iterable[SyncResult]) -> SyncResult:
    results = list(results)
    failed = [r for r in results if not r.success]
    if not failed:
        return results[-1] if results else SyncResult(success=True)
    return failed[0]


class TournamentWorkflows:
    def __init__(
        self,
        binders: Mapping[CollectionName, CollectionBinder],
        ops: SyncOperations,
        gateway: RemoteStoreGateway,
        actor: str = "admin",
        actor_role: ActorRole = ActorRole.ADMIN,
        audit_log_limit: int = AUDIT_LOG_LIMIT,
    ) -> None:
        missing = [name for name in CollectionName if name not in binders]
        if missing:
            raise ValueError(f"Missing binders for: {', '.join(missing)}")
        self._binders = binders
        self._ops = ops
        self._gateway = gateway
        self._actor = actor
        self._actor_role = actor_role
        self._audit_log_limit = audit_log_limit
        self._global: BroadcastChannel | None = None

    @property
    def actor(self) -> str:
        return self._actor

    @property
    def actor_role(self) -> ActorRole:
        return self._actor_role

    def close(self) -> None:
        if self._global is not None:
            self._global.close()
            self._global = None

    # -- tournaments -------------------------------------------------------

    async def create_tournament(
        self,
        name: str,
        variant: TournamentFormat = TournamentFormat.ROUND_BASED,
        settings: TournamentSettings | None = None,
        start_date: str | None = None,
        start_time: str | None = None,
    ) -> WorkflowResult:
        self._require_admin("create tournaments")
        if not name.strip():
            raise ValidationError("Tournament name is required")

        tournament = Tournament(
            id=new_record_id("tournament"),
            name=name.strip(),
            variant=variant,
            settings=settings or TournamentSettings(),
            start_date=start_date,
            start_time=start_time,
        )
        result = await self._upsert(
            CollectionName.TOURNAMENTS,
            tournament,
            "create-tournament",
            lambda: self._gateway.create(CollectionName.TOURNAMENTS, tournament.to_wire()),
        )
        self._post_global(
            {"type": TOURNAMENT_CREATED, "tournamentId": tournament.id, "tournament": tournament.to_wire()},
        )
        await self._audit(
            "TOURNAMENT_CREATED",
            f"Tournament created: {tournament.name}",
            tournament_id=tournament.id,
            metadata={"type": tournament.variant.value},
        )
        return WorkflowResult(result, tournament)

    async def update_multipliers(self, tournament_id: str, multipliers: Mapping[int, float]) -> WorkflowResult:
        self._require_admin("change multipliers")
        tournament = self._tournament(tournament_id, require_active=True)
        table = {int(position): float(value) for position, value in multipliers.items()}
        if any(position < 1 for position in table):
            raise ValidationError("Multiplier positions start at 1")
        if any(value < 0 for value in table.values()):
            raise ValidationError("Multipliers must not be negative")

        updated = tournament.model_copy(
            update={"settings": tournament.settings.model_copy(update={"multipliers": table})},
        )
        result = await self._upsert(
            CollectionName.TOURNAMENTS,
            updated,
            "update-multipliers",
            lambda: self._gateway.update(CollectionName.TOURNAMENTS, updated.id, updated.to_wire()),
        )
        await self._audit(
            "MULTIPLIERS_UPDATED",
            f"Multipliers updated for {tournament.name}",
            tournament_id=tournament.id,
            metadata={"multipliers": {str(k): v for k, v in table.items()}},
        )
        return WorkflowResult(result, updated)

    async def terminate_tournament(self, tournament_id: str) -> WorkflowResult:
        """Archive a tournament with a snapshot of its records and clear them from the live collections."""
        self._require_admin("terminate tournaments")
        tournament = self._tournament(tournament_id)
        if tournament.archived_data is not None:
            raise ValidationError(f"Tournament {tournament_id} is already archived")

        owned = {name: self._owned_by(name, tournament_id) for name in TOURNAMENT_OWNED}
        snapshot = ArchivedData(
            teams=tuple(owned[CollectionName.TEAMS]),
            matches=tuple(owned[CollectionName.MATCHES]),
            adjustments=tuple(owned[CollectionName.SCORE_ADJUSTMENTS]),
            pending_submissions=tuple(owned[CollectionName.PENDING_SUBMISSIONS]),
        )
        archived = tournament.archive(snapshot, at=snapshot.archived_at)

        results = [
            await self._upsert(
                CollectionName.TOURNAMENTS,
                archived,
                "terminate-tournament",
                lambda: self._push_archived(archived),
            ),
        ]
        results.extend(await self._purge_operational(tournament_id, owned, "terminate-tournament"))

        self._post_global({"type": TOURNAMENT_TERMINATED, "tournamentId": tournament_id})
        await self._audit(
            "TOURNAMENT_COMPLETED",
            f"Tournament terminated and archived: {tournament.name}",
            tournament_id=tournament_id,
            metadata={
                "teams": len(snapshot.teams),
                "matches": len(snapshot.matches),
                "adjustments": len(snapshot.adjustments),
            },
        )
        logger.info("tournament archived", tournament_id=tournament_id, teams=len(snapshot.teams))
        return WorkflowResult(_combine(results), archived)

    async def delete_tournament(self, tournament_id: str) -> WorkflowResult:
        """Remove a tournament and every operational record it owns."""
        self._require_admin("delete tournaments")
        tournament = self._tournament(tournament_id)
        owned = {name: self._owned_by(name, tournament_id) for name in TOURNAMENT_OWNED}

        # The hub cascades the tournament delete to its records, so only one remote call is needed.
        results = [
            await self._remove(
                CollectionName.TOURNAMENTS,
                tournament_id,
                "delete-tournament",
                lambda: self._gateway.delete(CollectionName.TOURNAMENTS, tournament_id),
            ),
        ]
        results.extend(await self._purge_operational(tournament_id, owned, "delete-tournament", remote=False))

        self._post_global({"type": TOURNAMENT_DELETED, "tournamentId": tournament_id})
        await self._audit(
            "TOURNAMENT_DELETED",
            f"Tournament permanently deleted: {tournament.name}",
            tournament_id=tournament_id,
        )
        return WorkflowResult(_combine(results), tournament)

    # -- teams ---------------------------------------------------------------

    async def register_team(
        self,
        tournament_id: str,
        name: str,
        lobby: int | None = None,
        slot: int | None = None,
    ) -> WorkflowResult:
        self._require_staff(tournament_id, "register teams")
        tournament = self._tournament(tournament_id, require_active=True)
        if not name.strip():
            raise ValidationError("Team name is required")
        if lobby is not None and not 1 <= lobby <= tournament.settings.lobbies:
            raise ValidationError(f"Lobby {lobby} is outside 1..{tournament.settings.lobbies}")
        if slot is not None and not 1 <= slot <= tournament.settings.slots_per_lobby:
            raise ValidationError(f"Slot {slot} is outside 1..{tournament.settings.slots_per_lobby}")

        teams = self._records(CollectionName.TEAMS)
        if lobby is not None and slot is not None:
            for team in teams:
                if team.tournament_id == tournament_id and team.lobby == lobby and team.slot == slot:
                    raise ValidationError(f"Lobby {lobby} slot {slot} is already taken by {team.name}")

        taken = {team.code for team in teams}
        for attempt in range(1, _TEAM_CODE_ATTEMPTS + 1):
            code = generate_unique_code(taken)
            team = Team(
                id=f"{tournament_id}-{code}",
                name=name.strip(),
                code=code,
                tournament_id=tournament_id,
                lobby=lobby,
                slot=slot,
            )
            result = await self._upsert(
                CollectionName.TEAMS,
                team,
                "register-team",
                lambda t=team: self._gateway.create(CollectionName.TEAMS, t.to_wire()),
            )
            # The local binder may be scoped to one tournament; the hub sees every code.
            if result.details.get("httpStatus") != HTTPStatus.CONFLICT or attempt == _TEAM_CODE_ATTEMPTS:
                break
            logger.info("team code taken on hub, regenerating", code=code, attempt=attempt)
            taken.add(code)
            await self._remove(CollectionName.TEAMS, code, "discard-team-code", _noop)

        self._post_global({"type": TEAM_CREATED, "tournamentId": tournament_id, "team": team.to_wire()})
        await self._audit(
            "TEAM_REGISTERED",
            f"Team registered: {team.name} ({team.code})",
            tournament_id=tournament_id,
            metadata={"teamCode": team.code, "lobby": lobby, "slot": slot},
        )
        return WorkflowResult(result, team)

    async def remove_team(self, team_code: str) -> WorkflowResult:
        team = self._team(team_code)
        self._require_staff(team.tournament_id, "remove teams")
        result = await self._remove(
            CollectionName.TEAMS,
            team.code,
            "remove-team",
            lambda: self._gateway.delete(CollectionName.TEAMS, team.id),
        )
        await self._audit(
            "TEAM_REMOVED",
            f"Team removed: {team.name} ({team.code})",
            tournament_id=team.tournament_id,
            metadata={"teamCode": team.code},
        )
        return WorkflowResult(result, team)

    # -- submissions and matches -------------------------------------------

    async def submit_result(
        self,
        team_code: str,
        position: int,
        kills: int,
        photos: Iterable[str] = (),
    ) -> WorkflowResult:
        team = self._team(team_code)
        if self._actor_role == ActorRole.TEAM and self._actor != team.code:
            raise ValidationError("Teams can only submit their own results")
        tournament = self._tournament(team.tournament_id, require_active=True)
        self._check_result(tournament, position, kills)

        submission = PendingSubmission(
            id=new_record_id("submission"),
            team_code=team.code,
            team_name=team.name,
            position=position,
            kills=kills,
            tournament_id=tournament.id,
            photos=tuple(photos),
        )
        result = await self._upsert(
            CollectionName.PENDING_SUBMISSIONS,
            submission,
            "submit-result",
            lambda: self._gateway.create(CollectionName.PENDING_SUBMISSIONS, submission.to_wire()),
        )
        return WorkflowResult(result, submission)

    async def approve_submission(self, submission_id: str) -> WorkflowResult:
        submission = self._submission(submission_id)
        self._require_staff(submission.tournament_id, "approve submissions")
        tournament = self._tournament(submission.tournament_id)

        match = Match(
            id=new_record_id("match"),
            team_code=submission.team_code,
            position=submission.position,
            kills=submission.kills,
            score=score_match(submission.kills, submission.position, tournament.settings.multipliers),
            status=MatchStatus.APPROVED,
            tournament_id=submission.tournament_id,
            submitted_at=submission.submitted_at,
            reviewed_at=now_ms(),
            reviewed_by=self._actor,
            photos=submission.photos,
        )
        results = [
            await self._upsert(
                CollectionName.MATCHES,
                match,
                "approve-submission",
                lambda: self._gateway.create(CollectionName.MATCHES, match.to_wire()),
            ),
            await self._remove(
                CollectionName.PENDING_SUBMISSIONS,
                submission.id,
                "approve-submission",
                lambda: self._gateway.delete(CollectionName.PENDING_SUBMISSIONS, submission.id),
            ),
        ]
        await self._audit(
            "SUBMISSION_APPROVED",
            f"Submission approved for {submission.team_name}: position {submission.position}, {submission.kills} kills",
            tournament_id=submission.tournament_id,
            metadata={"teamCode": submission.team_code, "submissionId": submission.id, "score": match.score},
        )
        return WorkflowResult(_combine(results), match)

    async def reject_submission(self, submission_id: str) -> WorkflowResult:
        submission = self._submission(submission_id)
        self._require_staff(submission.tournament_id, "reject submissions")
        result = await self._remove(
            CollectionName.PENDING_SUBMISSIONS,
            submission.id,
            "reject-submission",
            lambda: self._gateway.delete(CollectionName.PENDING_SUBMISSIONS, submission.id),
        )
        await self._audit(
            "SUBMISSION_REJECTED",
            f"Submission rejected for {submission.team_name}",
            tournament_id=submission.tournament_id,
            metadata={"teamCode": submission.team_code, "submissionId": submission.id},
        )
        return WorkflowResult(result, submission)

    async def record_manual_match(
        self,
        team_code: str,
        position: int,
        kills: int,
        match_number: int | None = None,
    ) -> WorkflowResult:
        """Enter an approved match directly, bypassing the submission queue."""
        team = self._team(team_code)
        self._require_staff(team.tournament_id, "enter results")
        tournament = self._tournament(team.tournament_id, require_active=True)
        self._check_result(tournament, position, kills)
        if match_number is not None and not 1 <= match_number <= tournament.settings.total_matches:
            raise ValidationError(f"Match number {match_number} is outside 1..{tournament.settings.total_matches}")

        at = now_ms()
        match = Match(
            id=new_record_id("match"),
            team_code=team.code,
            position=position,
            kills=kills,
            score=score_match(kills, position, tournament.settings.multipliers),
            status=MatchStatus.APPROVED,
            tournament_id=tournament.id,
            submitted_at=at,
            reviewed_at=at,
            reviewed_by=self._actor,
            match_number=match_number,
        )
        result = await self._upsert(
            CollectionName.MATCHES,
            match,
            "manual-match",
            lambda: self._gateway.create(CollectionName.MATCHES, match.to_wire()),
        )
        await self._audit(
            "MANUAL_SUBMISSION",
            f"Manual result for {team.name}: position {position}, {kills} kills",
            tournament_id=tournament.id,
            metadata={"teamCode": team.code, "matchNumber": match_number, "score": match.score},
        )
        return WorkflowResult(result, match)

    # -- adjustments -------------------------------------------------------

    async def add_adjustment(
        self,
        team_code: str,
        points: float,
        reason: str,
        category: AdjustmentCategory = AdjustmentCategory.PENALTY,
    ) -> WorkflowResult:
        team = self._team(team_code)
        self._require_staff(team.tournament_id, "adjust scores")
        self._tournament(team.tournament_id, require_active=True)
        if not reason.strip():
            raise ValidationError("An adjustment needs a reason")
        if points == 0:
            raise ValidationError("An adjustment of zero points has no effect")

        delta = abs(points) if category == AdjustmentCategory.REWARD else -abs(points)
        adjustment = ScoreAdjustment(
            id=new_record_id("adjustment"),
            team_code=team.code,
            team_name=team.name,
            points=delta,
            reason=reason.strip(),
            category=category,
            applied_by=self._actor,
            tournament_id=team.tournament_id,
        )
        result = await self._upsert(
            CollectionName.SCORE_ADJUSTMENTS,
            adjustment,
            "add-adjustment",
            lambda: self._gateway.create(CollectionName.SCORE_ADJUSTMENTS, adjustment.to_wire()),
        )
        await self._audit(
            "SCORE_ADJUSTMENT",
            f"{category.value.capitalize()} of {delta:+g} points for {team.name}: {adjustment.reason}",
            tournament_id=team.tournament_id,
            metadata={"teamCode": team.code, "points": delta, "category": category.value},
        )
        return WorkflowResult(result, adjustment)

    async def remove_adjustment(self, adjustment_id: str) -> WorkflowResult:
        adjustment = self._binders[CollectionName.SCORE_ADJUSTMENTS].get(adjustment_id)
        if not isinstance(adjustment, ScoreAdjustment):
            raise ValidationError(f"Unknown score adjustment {adjustment_id}")
        self._require_staff(adjustment.tournament_id, "remove adjustments")
        result = await self._remove(
            CollectionName.SCORE_ADJUSTMENTS,
            adjustment.id,
            "remove-adjustment",
            lambda: self._gateway.delete(CollectionName.SCORE_ADJUSTMENTS, adjustment.id),
        )
        await self._audit(
            "SCORE_ADJUSTMENT",
            f"Adjustment of {adjustment.points:+g} points removed for {adjustment.team_name or adjustment.team_code}",
            tournament_id=adjustment.tournament_id,
            metadata={"teamCode": adjustment.team_code, "adjustmentId": adjustment.id, "removed": True},
        )
        return WorkflowResult(result, adjustment)

    # -- managers ----------------------------------------------------------

    async def create_manager(self, name: str, permissions: Iterable[str] = ()) -> WorkflowResult:
        self._require_admin("create managers")
        if not name.strip():
            raise ValidationError("Manager name is required")
        code = generate_unique_code(
            (m.code for m in self._records(CollectionName.MANAGERS)),
            prefix=MANAGER_CODE_PREFIX,
        )
        manager = Manager(
            code=code,
            name=name.strip(),
            id=code,
            permissions=tuple(permissions),
            created_by=self._actor,
        )
        result = await self._upsert(
            CollectionName.MANAGERS,
            manager,
            "create-manager",
            lambda: self._gateway.create(CollectionName.MANAGERS, manager.to_wire()),
        )
        await self._audit(
            "MANAGER_CREATED",
            f"Manager created: {manager.name} ({code})",
            metadata={"managerCode": code},
        )
        return WorkflowResult(result, manager)

    async def deactivate_manager(self, code: str) -> WorkflowResult:
        self._require_admin("deactivate managers")
        manager = self._manager(code)
        if not manager.is_active:
            raise ValidationError(f"Manager {code} is already inactive")
        updated = manager.model_copy(update={"is_active": False})
        result = await self._upsert(
            CollectionName.MANAGERS,
            updated,
            "deactivate-manager",
            lambda: self._gateway.update(CollectionName.MANAGERS, updated.code, updated.to_wire()),
        )
        await self._audit(
            "MANAGER_DEACTIVATED",
            f"Manager deactivated: {manager.name} ({code})",
            metadata={"managerCode": code},
        )
        return WorkflowResult(result, updated)

    async def remove_manager(self, code: str) -> WorkflowResult:
        self._require_admin("remove managers")
        manager = self._manager(code)
        result = await self._remove(
            CollectionName.MANAGERS,
            manager.code,
            "remove-manager",
            lambda: self._gateway.delete(CollectionName.MANAGERS, manager.code),
        )
        await self._audit(
            "MANAGER_REMOVED",
            f"Manager removed: {manager.name} ({code})",
            metadata={"managerCode": code},
        )
        return WorkflowResult(result, manager)

    # -- internals ---------------------------------------------------------

    async def _commit(
        self,
        collection: CollectionName,
        changes: Sequence[EntityChange],
        name: str,
        remote_call: Callable[[], Awaitable[Any]],
    ) -> SyncResult:
        binder = self._binders[collection]
        return await self._ops.run(
            local_update=lambda: binder.set_state(lambda state: apply_changes(state, changes)),
            remote_call=remote_call,
            name=name,
            changes=changes,
        )

    async def _upsert(
        self,
        collection: CollectionName,
        record: Record,
        name: str,
        remote_call: Callable[[], Awaitable[Any]],
    ) -> SyncResult:
        binder = self._binders[collection]
        kind = EventKind.CREATED if binder.get(binder.spec.key_of(record)) is None else EventKind.UPDATED
        return await self._commit(collection, [EntityChange.upsert(binder.spec, record, kind)], name, remote_call)

    async def _remove(
        self,
        collection: CollectionName,
        key: str,
        name: str,
        remote_call: Callable[[], Awaitable[Any]],
    ) -> SyncResult:
        spec = self._binders[collection].spec
        return await self._commit(collection, [EntityChange.removal(spec, key)], name, remote_call)

    async def _purge_operational(
        self,
        tournament_id: str,
        owned: Mapping[CollectionName, list[Record]],
        name: str,
        remote: bool = True,
    ) -> list[SyncResult]:
        results = []
        for collection in TOURNAMENT_OWNED:
            records = owned[collection]
            if not records:
                continue
            spec = self._binders[collection].spec
            changes = [EntityChange.removal(spec, spec.key_of(r)) for r in records]
            ids = [r.id for r in records]
            results.append(
                await self._commit(
                    collection,
                    changes,
                    name,
                    (lambda c=collection, i=ids: self._delete_remote(c, i)) if remote else _noop,
                ),
            )
        return results

    async def _delete_remote(self, collection: CollectionName, record_ids: list[str]) -> None:
        """Delete every id, attempting all of them before reporting the first failure."""
        first_error: RemoteError | None = None
        for record_id in record_ids:
            try:
                await self._gateway.delete(collection, record_id)
            except RemoteError as e:
                first_error = first_error or e
        if first_error is not None:
            raise first_error

    async def _push_archived(self, tournament: Tournament) -> None:
        report = await self._gateway.reconcile_archived([tournament])
        if not report.success:
            raise RemoteError(f"Archived tournament {tournament.id} could not be synced")

    async def _audit(
        self,
        action: str,
        details: str,
        *,
        tournament_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SyncResult:
        entry = create_audit_log(
            action,
            details,
            self._actor,
            self._actor_role,
            tournament_id=tournament_id,
            metadata=metadata,
        )
        binder = self._binders[CollectionName.AUDIT_LOGS]
        logs = binder.records()
        changes = [EntityChange.upsert(binder.spec, entry, EventKind.CREATED)]
        changes += [EntityChange.removal(binder.spec, old.id) for old in logs[self._audit_log_limit - 1 :]]
        result = await self._ops.run(
            local_update=lambda: binder.set_state(append_audit_log(logs, entry, self._audit_log_limit)),
            remote_call=lambda: self._gateway.create(CollectionName.AUDIT_LOGS, entry.to_wire()),
            name="audit-log",
            changes=changes,
        )
        if not result.success:
            logger.debug("audit log kept locally", action=action, error=result.error)
        return result

    def _post_global(self, message: dict[str, Any]) -> None:
        if self._global is None:
            self._global = self._ops.bus.channel(GLOBAL_CHANNEL)
        self._global.post(message)

    def _records(self, collection: CollectionName) -> list[Any]:
        return self._binders[collection].records()

    def _owned_by(self, collection: CollectionName, tournament_id: str) -> list[Record]:
        return [r for r in self._records(collection) if getattr(r, "tournament_id", None) == tournament_id]

    def _tournament(self, tournament_id: str, *, require_active: bool = False) -> Tournament:
        tournament = self._binders[CollectionName.TOURNAMENTS].get(tournament_id)
        if not isinstance(tournament, Tournament):
            raise ValidationError(f"Unknown tournament {tournament_id}")
        if require_active and not tournament.is_active:
            raise ValidationError(f"Tournament {tournament.name} is {tournament.status}")
        return tournament

    def _team(self, team_code: str) -> Team:
        team = self._binders[CollectionName.TEAMS].get(team_code)
        if not isinstance(team, Team):
            raise ValidationError(f"Unknown team {team_code}")
        return team

    def _submission(self, submission_id: str) -> PendingSubmission:
        submission = self._binders[CollectionName.PENDING_SUBMISSIONS].get(submission_id)
        if not isinstance(submission, PendingSubmission):
            raise ValidationError(f"Unknown submission {submission_id}")
        return submission

    def _manager(self, code: str) -> Manager:
        manager = self._binders[CollectionName.MANAGERS].get(code)
        if not isinstance(manager, Manager):
            raise ValidationError(f"Unknown manager {code}")
        return manager

    @staticmethod
    def _check_result(tournament: Tournament, position: int, kills: int) -> None:
        max_position = tournament.settings.slots_per_lobby
        if not 1 <= position <= max_position:
            raise ValidationError(f"Position {position} is outside 1..{max_position}")
        if kills < 0:
            raise ValidationError("Kills cannot be negative")

    def _require_admin(self, what: str) -> None:
        if self._actor_role != ActorRole.ADMIN:
            raise ValidationError(f"Only admins can {what}")

    def _require_staff(self, tournament_id: str, what: str) -> None:
        """Admins act anywhere; managers only on tournaments they are assigned to."""
        if self._actor_role == ActorRole.ADMIN:
            return
        if self._actor_role == ActorRole.MANAGER:
            tournament = self._binders[CollectionName.TOURNAMENTS].get(tournament_id)
            if isinstance(tournament, Tournament) and self._actor in tournament.assigned_managers:
                return
        raise ValidationError(f"{self._actor} is not allowed to {what} in tournament {tournament_id}")


async def _noop() -> None:
    return None
