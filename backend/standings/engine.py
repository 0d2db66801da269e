"""Leaderboard scoring.

Pure functions from a roster, its match history and its score adjustments to
a ranked standings table. Only approved matches count; each team's best
`counted_matches` match scores are summed and adjustments added on top.

Ties on final score are broken by total kills (higher first), then by the
earliest first approved submission, then by team code, so equal inputs always
produce the same order.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from shared.records import MatchStatus, TournamentStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from shared.records import Match, ScoreAdjustment, Team, Tournament

# Position -> kill multiplier.
DEFAULT_MULTIPLIERS: dict[int, float] = {
    1: 2.0,
    2: 1.8,
    3: 1.8,
    4: 1.6,
    5: 1.6,
    6: 1.6,
    7: 1.4,
    8: 1.4,
    9: 1.4,
    10: 1.4,
    **dict.fromkeys(range(11, 21), 1.0),
}

UNLISTED_POSITION_MULTIPLIER = 1.0

# Sorts after every real timestamp.
_NEVER = 2**63 - 1


@dataclass(frozen=True)
class RankedTeam:
    rank: int
    team_code: str
    team_name: str
    counted_scores: tuple[float, ...]
    matches_played: int
    match_total: float
    adjustment_total: float
    final_score: float
    total_kills: int


def multiplier_for(position: int, multipliers: Mapping[int, float] | None = None) -> float:
    table = DEFAULT_MULTIPLIERS if multipliers is None else multipliers
    return table.get(position, UNLISTED_POSITION_MULTIPLIER)


def score_match(kills: int, position: int, multipliers: Mapping[int, float] | None = None) -> float:
    return round(kills * multiplier_for(position, multipliers), 2)


def best_n_total(scores: Iterable[float], counted_matches: int) -> tuple[tuple[float, ...], float]:
    """Return the top counted_matches scores (descending) and their sum."""
    best = tuple(sorted(scores, reverse=True)[: max(counted_matches, 0)])
    return best, round(sum(best), 2)


def _approved_score(match: Match, multipliers: Mapping[int, float] | None) -> float:
    if match.score is not None:
        return match.score
    return score_match(match.kills, match.position, multipliers)


def compute_standings(
    teams: Iterable[Team],
    matches: Iterable[Match],
    adjustments: Iterable[ScoreAdjustment],
    counted_matches: int,
    multipliers: Mapping[int, float] | None = None,
    tournament_id: str | None = None,
) -> list[RankedTeam]:
    """Rank every team that has at least one approved match or adjustment.

    When tournament_id is given, records of other tournaments are ignored.
    """

    def in_scope(owner: str | None) -> bool:
        return tournament_id is None or owner == tournament_id

    approved: dict[str, list[Match]] = {}
    for match in matches:
        if match.status == MatchStatus.APPROVED and in_scope(match.tournament_id):
            approved.setdefault(match.team_code, []).append(match)

    adjustment_totals: dict[str, float] = {}
    for adjustment in adjustments:
        if in_scope(adjustment.tournament_id):
            code = adjustment.team_code
            adjustment_totals[code] = adjustment_totals.get(code, 0.0) + adjustment.points

    rows: list[tuple[tuple[float, int, int, str], RankedTeam]] = []
    seen: set[str] = set()
    for team in teams:
        if team.code in seen or not in_scope(team.tournament_id):
            continue
        seen.add(team.code)

        team_matches = approved.get(team.code, [])
        if not team_matches and team.code not in adjustment_totals:
            continue

        scores = [_approved_score(m, multipliers) for m in team_matches]
        counted, match_total = best_n_total(scores, counted_matches)
        adjustment_total = round(adjustment_totals.get(team.code, 0.0), 2)
        final_score = round(match_total + adjustment_total, 2)
        total_kills = sum(m.kills for m in team_matches)
        first_submitted = min((m.submitted_at for m in team_matches), default=None)

        entry = RankedTeam(
            rank=0,
            team_code=team.code,
            team_name=team.name,
            counted_scores=counted,
            matches_played=len(team_matches),
            match_total=match_total,
            adjustment_total=adjustment_total,
            final_score=final_score,
            total_kills=total_kills,
        )
        # Teams with no approved match sort after any team with one at equal score and kills.
        sort_key = (-final_score, -total_kills, first_submitted if first_submitted is not None else _NEVER, team.code)
        rows.append((sort_key, entry))

    rows.sort(key=lambda row: row[0])
    return [replace(entry, rank=index) for index, (_, entry) in enumerate(rows, start=1)]


def standings_for_tournament(
    tournament: Tournament,
    teams: Iterable[Team],
    matches: Iterable[Match],
    adjustments: Iterable[ScoreAdjustment],
) -> list[RankedTeam]:
    """Standings of one tournament, read from its archived snapshot once archived."""
    if tournament.status == TournamentStatus.ARCHIVED and tournament.archived_data is not None:
        snapshot = tournament.archived_data
        teams, matches, adjustments = snapshot.teams, snapshot.matches, snapshot.adjustments

    return compute_standings(
        teams,
        matches,
        adjustments,
        counted_matches=tournament.settings.counted_matches,
        multipliers=tournament.settings.multipliers,
        tournament_id=tournament.id,
    )
