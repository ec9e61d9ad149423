"""
Team stat lookup and opponent / defensive splits.

Provider stat sheets are lists of loosely named entries::

    {"stat_id": 57, "name": "pointsAllowed", "display_name": "Points Allowed",
     "value": 231.0, "per_game_value": 19.25}

Ids differ between sports and seasons, and names drift ("totalPointsAllowed",
"opponentPoints", ...).  :class:`StatLookup` resolves a stat with a fixed
priority of strategies and returns the first match:

    1. exact ``stat_id``
    2. case-insensitive substring of ``name``
    3. case-insensitive substring of ``display_name``

Opponent splits combine the stat sheet with figures derived directly from
the team's final games (points scored / allowed per game).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from backend.core.odds_math import is_finite_number
from backend.core.sport_config import Sport
from backend.services.aggregation import TeamAggregationService, get_aggregation_service, team_perspective
from backend.services.repository import GameRecord, SportsDataRepository

logger = logging.getLogger(__name__)

StatEntry = Mapping[str, Any]


@dataclass(frozen=True)
class StatSpec:
    """What to look for: an optional id plus name fragments."""

    key: str
    stat_id: Optional[int] = None
    names: Tuple[str, ...] = ()
    display_names: Tuple[str, ...] = ()


def _by_id(stats: Sequence[StatEntry], spec: StatSpec) -> Optional[StatEntry]:
    if spec.stat_id is None:
        return None
    for stat in stats:
        if stat.get("stat_id") == spec.stat_id:
            return stat
    return None


def _by_field_substring(field_name: str, fragments_attr: str) -> Callable[[Sequence[StatEntry], StatSpec], Optional[StatEntry]]:
    def strategy(stats: Sequence[StatEntry], spec: StatSpec) -> Optional[StatEntry]:
        for fragment in getattr(spec, fragments_attr):
            needle = fragment.lower()
            for stat in stats:
                value = stat.get(field_name)
                if isinstance(value, str) and needle in value.lower():
                    return stat
        return None

    return strategy


class StatLookup:
    """Prioritized stat resolution over a stat sheet."""

    STRATEGIES: Tuple[Callable[[Sequence[StatEntry], StatSpec], Optional[StatEntry]], ...] = (
        _by_id,
        _by_field_substring("name", "names"),
        _by_field_substring("display_name", "display_names"),
    )

    def __init__(self, stats: Sequence[StatEntry]):
        self.stats = [s for s in stats if isinstance(s, Mapping)]

    def find(self, spec: StatSpec) -> Optional[StatEntry]:
        for strategy in self.STRATEGIES:
            match = strategy(self.stats, spec)
            if match is not None:
                return match
        return None

    def value(self, spec: StatSpec, per_game: bool = True) -> Optional[float]:
        """Numeric value of the matched stat, preferring the per-game figure."""
        stat = self.find(spec)
        if stat is None:
            return None
        fields = ("per_game_value", "value") if per_game else ("value", "per_game_value")
        for name in fields:
            candidate = stat.get(name)
            if is_finite_number(candidate):
                return float(candidate)
        return None


# Defensive stats read from the sheet.  Ids are the NFL provider ids; other
# sports fall through to the name strategies.
DEFENSIVE_STATS: Tuple[StatSpec, ...] = (
    StatSpec("points_allowed", stat_id=57, names=("pointsAllowed", "opponentPoints"), display_names=("Points Allowed", "Opponent Points")),
    StatSpec("yards_allowed", stat_id=58, names=("yardsAllowed", "opponentYards"), display_names=("Yards Allowed",)),
    StatSpec("takeaways", stat_id=12, names=("takeaways", "fumblesRecovered"), display_names=("Takeaways", "Fumbles Recovered")),
    StatSpec("sacks", stat_id=10, names=("sacks",), display_names=("Sacks",)),
)


@dataclass
class OpponentSplits:
    team_id: int
    season_year: int
    games_counted: int = 0
    points_for_per_game: Optional[float] = None
    points_against_per_game: Optional[float] = None
    defensive: Dict[str, Optional[float]] = field(default_factory=dict)


def scoring_averages(team_id: int, games: Sequence[GameRecord]) -> Tuple[int, Optional[float], Optional[float]]:
    """``(games, points_for/game, points_against/game)`` over final games."""
    scored: List[float] = []
    allowed: List[float] = []
    for game in games:
        if not game.is_final:
            continue
        view = team_perspective(team_id, game)
        if view is None:
            continue
        _, team_score, opp_score = view
        scored.append(team_score)
        allowed.append(opp_score)
    if not scored:
        return 0, None, None
    return len(scored), float(np.mean(scored)), float(np.mean(allowed))


class TeamStatsService:
    """Opponent and defensive splits for a team."""

    def __init__(self, repository: SportsDataRepository, aggregation: TeamAggregationService):
        self.repository = repository
        self.aggregation = aggregation

    def opponent_splits(
        self,
        sport: Sport,
        team_id: int,
        season_year: Optional[int] = None,
    ) -> Optional[OpponentSplits]:
        try:
            season = self.aggregation.resolve_season(sport, season_year)
            games = self.aggregation.team_season_games(sport, team_id, season)
            count, points_for, points_against = scoring_averages(team_id, games)

            sheet = self.repository.find_team_stats(sport.sport_id, team_id, season)
            lookup = StatLookup(sheet.stats if sheet else [])

            return OpponentSplits(
                team_id=team_id,
                season_year=season,
                games_counted=count,
                points_for_per_game=points_for,
                points_against_per_game=points_against,
                defensive={spec.key: lookup.value(spec) for spec in DEFENSIVE_STATS},
            )
        except Exception as exc:
            logger.error("Opponent splits failed for team %s (%s): %s", team_id, sport, exc, exc_info=True)
            return None


_team_stats_service: Optional[TeamStatsService] = None


def get_team_stats_service() -> TeamStatsService:
    global _team_stats_service
    if _team_stats_service is None:
        aggregation = get_aggregation_service()
        _team_stats_service = TeamStatsService(aggregation.repository, aggregation)
    return _team_stats_service
