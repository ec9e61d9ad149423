"""Tests for stat-sheet lookup and opponent splits."""

import pytest
from unittest.mock import MagicMock

from backend.core.sport_config import Sport
from backend.services.repository import TeamStatSheet
from backend.services.team_stats import (
    DEFENSIVE_STATS,
    StatLookup,
    StatSpec,
    TeamStatsService,
    scoring_averages,
)

from conftest import make_game

TEAM = 10

SHEET = [
    {"stat_id": 57, "name": "pointsAllowed", "display_name": "Points Allowed", "value": 231.0, "per_game_value": 19.25},
    {"stat_id": 90, "name": "totalYardsAllowedPerGame", "display_name": "Yards Allowed", "value": 3900.0},
    {"stat_id": 10, "name": "sacks", "display_name": "Sacks", "value": 41},
    {"name": "defensiveTakeaways", "display_name": "Takeaways", "value": 22, "per_game_value": None},
]


# ---------------------------------------------------------------------------
# StatLookup
# ---------------------------------------------------------------------------

def test_stat_id_takes_priority_over_name():
    stats = [
        {"stat_id": 1, "name": "pointsAllowed", "value": 1.0},
        {"stat_id": 57, "name": "somethingElse", "value": 2.0},
    ]
    spec = StatSpec("points_allowed", stat_id=57, names=("pointsAllowed",))
    assert StatLookup(stats).find(spec)["value"] == 2.0


def test_name_substring_is_case_insensitive():
    spec = StatSpec("yards_allowed", stat_id=58, names=("yardsallowed",))
    assert StatLookup(SHEET).find(spec)["stat_id"] == 90


def test_display_name_is_last_resort():
    stats = [{"name": "x1", "display_name": "Opponent Points Per Game", "value": 20.5}]
    spec = StatSpec("points_allowed", stat_id=57, names=("pointsAllowed",), display_names=("Opponent Points",))
    assert StatLookup(stats).value(spec) == pytest.approx(20.5)


def test_no_match_returns_none():
    spec = StatSpec("interceptions", stat_id=999, names=("interceptions",))
    lookup = StatLookup(SHEET)
    assert lookup.find(spec) is None
    assert lookup.value(spec) is None


@pytest.mark.parametrize("per_game, expected", [
    (True, 19.25),
    (False, 231.0),
])
def test_value_prefers_requested_figure(per_game, expected):
    spec = StatSpec("points_allowed", stat_id=57)
    assert StatLookup(SHEET).value(spec, per_game=per_game) == pytest.approx(expected)


def test_value_falls_back_when_per_game_missing():
    spec = StatSpec("takeaways", names=("takeaways",))
    assert StatLookup(SHEET).value(spec) == pytest.approx(22.0)


def test_non_mapping_entries_are_ignored():
    lookup = StatLookup([None, "junk", {"stat_id": 10, "value": 5}])
    assert lookup.value(StatSpec("sacks", stat_id=10)) == pytest.approx(5.0)


# ---------------------------------------------------------------------------
# Opponent splits
# ---------------------------------------------------------------------------

def test_scoring_averages_over_finals():
    games = [
        make_game("g1", TEAM, 20, 30, 10),
        make_game("g2", 21, TEAM, 24, 20),
        make_game("g3", TEAM, 22, None, None, status="scheduled"),
    ]
    count, points_for, points_against = scoring_averages(TEAM, games)
    assert count == 2
    assert points_for == pytest.approx(25.0)
    assert points_against == pytest.approx(17.0)


def test_scoring_averages_without_games():
    assert scoring_averages(TEAM, []) == (0, None, None)


def _service(games, sheet):
    repository = MagicMock()
    repository.find_team_stats.return_value = sheet
    aggregation = MagicMock()
    aggregation.resolve_season.side_effect = lambda sport, season: season or 2025
    aggregation.team_season_games.return_value = games
    return TeamStatsService(repository, aggregation), repository


def test_opponent_splits_combines_games_and_sheet():
    games = [make_game("g1", TEAM, 20, 30, 10), make_game("g2", 21, TEAM, 24, 20)]
    service, repository = _service(games, TeamStatSheet(team_id=TEAM, season_year=2025, stats=SHEET))

    splits = service.opponent_splits(Sport.NFL, TEAM, 2025)

    repository.find_team_stats.assert_called_once_with(Sport.NFL.sport_id, TEAM, 2025)
    assert splits.games_counted == 2
    assert splits.points_against_per_game == pytest.approx(17.0)
    assert set(splits.defensive) == {spec.key for spec in DEFENSIVE_STATS}
    assert splits.defensive["points_allowed"] == pytest.approx(19.25)
    assert splits.defensive["yards_allowed"] == pytest.approx(3900.0)
    assert splits.defensive["sacks"] == pytest.approx(41.0)
    assert splits.defensive["takeaways"] == pytest.approx(22.0)


def test_opponent_splits_without_sheet():
    service, _ = _service([], None)
    splits = service.opponent_splits(Sport.CFB, TEAM, 2025)
    assert splits.games_counted == 0
    assert all(value is None for value in splits.defensive.values())


def test_opponent_splits_failure_degrades_to_none():
    service, repository = _service([], None)
    repository.find_team_stats.side_effect = RuntimeError("db down")
    assert service.opponent_splits(Sport.NFL, TEAM, 2025) is None
