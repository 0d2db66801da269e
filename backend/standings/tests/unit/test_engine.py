import pytest

from shared.records import (
    ArchivedData,
    Match,
    MatchStatus,
    ScoreAdjustment,
    Team,
    Tournament,
    TournamentSettings,
)
from standings.engine import (
    DEFAULT_MULTIPLIERS,
    best_n_total,
    compute_standings,
    multiplier_for,
    score_match,
    standings_for_tournament,
)

_match_counter = iter(range(1, 10_000))


def _team(code: str, tournament_id: str = "t-1", name: str | None = None) -> Team:
    return Team(id=f"{tournament_id}-{code}", name=name or code, code=code, tournament_id=tournament_id)


def _match(
    code: str,
    position: int,
    kills: int,
    tournament_id: str = "t-1",
    submitted_at: int = 1000,
    status: MatchStatus = MatchStatus.APPROVED,
) -> Match:
    return Match(
        id=f"m-{next(_match_counter)}",
        team_code=code,
        position=position,
        kills=kills,
        tournament_id=tournament_id,
        submitted_at=submitted_at,
        status=status,
    )


def _adjustment(code: str, points: float, tournament_id: str = "t-1") -> ScoreAdjustment:
    return ScoreAdjustment(id=f"adj-{code}-{points}", team_code=code, points=points, tournament_id=tournament_id)


class TestMultipliers:
    @pytest.mark.parametrize(
        ("position", "expected"),
        [(1, 2.0), (2, 1.8), (3, 1.8), (4, 1.6), (6, 1.6), (7, 1.4), (10, 1.4), (11, 1.0), (20, 1.0)],
    )
    def test_default_table(self, position, expected):
        assert multiplier_for(position) == expected

    def test_unlisted_position(self):
        assert multiplier_for(21) == 1.0
        assert multiplier_for(3, {1: 3.0}) == 1.0

    def test_custom_table(self):
        assert multiplier_for(1, {1: 2.5}) == 2.5

    def test_default_table_covers_twenty_positions(self):
        assert sorted(DEFAULT_MULTIPLIERS) == list(range(1, 21))

    def test_score_match(self):
        assert score_match(10, 1) == 20.0
        assert score_match(7, 2) == 12.6
        assert score_match(0, 1) == 0.0


class TestBestNTotal:
    def test_keeps_highest_scores(self):
        best, total = best_n_total([10.0, 30.0, 5.0, 20.0], 3)
        assert best == (30.0, 20.0, 10.0)
        assert total == 60.0

    def test_fewer_scores_than_n(self):
        assert best_n_total([4.0], 3) == ((4.0,), 4.0)

    def test_no_scores(self):
        assert best_n_total([], 3) == ((), 0)


class TestComputeStandings:
    def test_best_n_of_matches(self):
        teams = [_team("ABC123")]
        matches = [_match("ABC123", 11, kills) for kills in (10, 30, 5, 20)]

        [row] = compute_standings(teams, matches, [], counted_matches=3)

        assert row.match_total == 60.0
        assert row.final_score == 60.0
        assert row.matches_played == 4
        assert row.total_kills == 65
        assert row.rank == 1

    def test_adjustments_apply_after_best_n(self):
        teams = [_team("ABC123")]
        matches = [_match("ABC123", 11, kills) for kills in (10, 30, 5, 20)]
        adjustments = [_adjustment("ABC123", 3), _adjustment("ABC123", -7)]

        [row] = compute_standings(teams, matches, adjustments, counted_matches=3)

        assert row.adjustment_total == -4.0
        assert row.final_score == 56.0

    def test_only_approved_matches_count(self):
        teams = [_team("ABC123")]
        matches = [
            _match("ABC123", 1, 10),
            _match("ABC123", 1, 50, status=MatchStatus.PENDING),
            _match("ABC123", 1, 50, status=MatchStatus.REJECTED),
        ]

        [row] = compute_standings(teams, matches, [], counted_matches=3)

        assert row.final_score == 20.0

    def test_teams_without_matches_or_adjustments_are_excluded(self):
        teams = [_team("ABC123"), _team("IDLE01")]

        rows = compute_standings(teams, [_match("ABC123", 1, 1)], [], counted_matches=3)

        assert [r.team_code for r in rows] == ["ABC123"]

    def test_adjustment_alone_makes_team_participate(self):
        rows = compute_standings([_team("ABC123")], [], [_adjustment("ABC123", 5)], counted_matches=3)
        assert rows[0].final_score == 5.0
        assert rows[0].matches_played == 0

    def test_records_for_unknown_teams_are_ignored(self):
        rows = compute_standings([_team("ABC123")], [_match("GHOST1", 1, 99)], [], counted_matches=3)
        assert rows == []

    def test_stored_score_survives_multiplier_change(self):
        approved = _match("ABC123", 1, 10).model_copy(update={"score": score_match(10, 1)})

        [row] = compute_standings([_team("ABC123")], [approved], [], counted_matches=3, multipliers={1: 5.0})

        assert row.final_score == 20.0

    def test_unscored_match_uses_current_multipliers(self):
        [row] = compute_standings(
            [_team("ABC123")], [_match("ABC123", 1, 10)], [], counted_matches=3, multipliers={1: 3.0}
        )
        assert row.final_score == 30.0

    def test_tournament_scope(self):
        teams = [_team("ABC123"), _team("XYZ789", tournament_id="t-2")]
        matches = [_match("ABC123", 1, 1), _match("XYZ789", 1, 5, tournament_id="t-2")]

        rows = compute_standings(teams, matches, [], counted_matches=3, tournament_id="t-1")

        assert [r.team_code for r in rows] == ["ABC123"]

    def test_duplicate_team_codes_counted_once(self):
        teams = [_team("ABC123"), _team("ABC123")]
        rows = compute_standings(teams, [_match("ABC123", 1, 1)], [], counted_matches=3)
        assert len(rows) == 1


class TestTieBreaks:
    def test_higher_score_first(self):
        teams = [_team("AAA111"), _team("BBB222")]
        matches = [_match("AAA111", 1, 5), _match("BBB222", 1, 6)]

        rows = compute_standings(teams, matches, [], counted_matches=3)

        assert [(r.rank, r.team_code) for r in rows] == [(1, "BBB222"), (2, "AAA111")]

    def test_equal_score_more_kills_first(self):
        # 10 kills at 1st = 20.0; 20 kills at 11th = 20.0
        teams = [_team("AAA111"), _team("BBB222")]
        matches = [_match("AAA111", 1, 10), _match("BBB222", 11, 20)]

        rows = compute_standings(teams, matches, [], counted_matches=3)

        assert [r.team_code for r in rows] == ["BBB222", "AAA111"]

    def test_equal_score_and_kills_earlier_submission_first(self):
        teams = [_team("AAA111"), _team("BBB222")]
        matches = [_match("AAA111", 1, 10, submitted_at=2000), _match("BBB222", 1, 10, submitted_at=1000)]

        rows = compute_standings(teams, matches, [], counted_matches=3)

        assert [r.team_code for r in rows] == ["BBB222", "AAA111"]

    def test_full_tie_falls_back_to_team_code(self):
        teams = [_team("ZZZ999"), _team("AAA111")]
        matches = [_match("ZZZ999", 1, 10), _match("AAA111", 1, 10)]

        rows = compute_standings(teams, matches, [], counted_matches=3)

        assert [r.team_code for r in rows] == ["AAA111", "ZZZ999"]
        assert [r.rank for r in rows] == [1, 2]

    def test_order_is_independent_of_input_order(self):
        teams = [_team(code) for code in ("AAA111", "BBB222", "CCC333")]
        matches = [_match("AAA111", 2, 4), _match("BBB222", 1, 4), _match("CCC333", 3, 9)]

        forward = compute_standings(teams, matches, [], counted_matches=3)
        backward = compute_standings(list(reversed(teams)), list(reversed(matches)), [], counted_matches=3)

        assert forward == backward


class TestStandingsForTournament:
    def test_uses_tournament_settings(self):
        tournament = Tournament(
            id="t-1",
            name="Cup",
            settings=TournamentSettings(total_matches=4, counted_matches=2, multipliers={11: 2.0}),
        )
        matches = [_match("ABC123", 11, kills) for kills in (10, 30, 5, 20)]

        [row] = standings_for_tournament(tournament, [_team("ABC123")], matches, [])

        assert row.final_score == 100.0

    def test_archived_tournament_reads_snapshot_only(self):
        snapshot = ArchivedData(
            teams=(_team("ABC123"),),
            matches=(_match("ABC123", 1, 10),),
            adjustments=(_adjustment("ABC123", -2),),
        )
        tournament = Tournament(id="t-1", name="Cup").archive(snapshot)
        later_match = _match("ABC123", 1, 50)

        [row] = standings_for_tournament(tournament, [_team("ABC123")], [later_match], [])

        assert row.final_score == 18.0
        assert row.matches_played == 1
