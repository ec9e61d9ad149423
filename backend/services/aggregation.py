"""
Team record and against-the-spread (ATS) aggregation.

Turns a team's season games into four record buckets:

    overall   every counted game
    home      games the team hosted
    road      games the team played away
    last_ten  the ten most recent counted games (by date)

Straight records compare raw scores.  ATS records add the team's consensus
spread to its score first::

    adjusted = team_score + team_spread
    adjusted >  opponent_score  →  ATS win
    adjusted <  opponent_score  →  ATS loss
    adjusted == opponent_score  →  push

so a −7 home favourite winning 20–14 is a straight-up win but an ATS loss
(20 − 7 = 13 < 14).

Only final games are counted.  An ATS bucket is never touched for a game
without a consensus spread on the team's side; such games are skipped, not
counted as any outcome.

Query cost
----------
``team_season_games`` and ``teams_season_games_bulk`` each cost exactly one
repository call; ``compute_ats_summary`` costs zero when handed a preloaded
odds map and one lookup per final game otherwise.

Failure policy
--------------
Public methods never raise.  Data-store or parsing failures are logged and
degrade to ``[]`` / ``{}`` / ``None`` so callers only ever see "no data".
A result built while the betting store was failing is returned but never
cached.
"""

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from backend.core.odds_math import is_finite_number
from backend.core.sport_config import Sport, current_season_year, sport_from_id
from backend.services.cache import DEFAULT_TTL_SECONDS, TTLCache
from backend.services.consensus import EventOdds, OddsConsensusService
from backend.services.repository import GameRecord, SportsDataRepository, sort_most_recent_first

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS: float = float(
    os.getenv("AGGREGATION_CACHE_TTL_HOURS", str(DEFAULT_TTL_SECONDS / 3600))
) * 3600

LAST_N_GAMES: int = 10

OUTCOME_WIN = "win"
OUTCOME_LOSS = "loss"
OUTCOME_PUSH = "push"


# ---------------------------------------------------------------------------
# Record value objects
# ---------------------------------------------------------------------------

@dataclass
class RecordSummary:
    wins: int = 0
    losses: int = 0
    pushes: int = 0
    games_played: int = 0

    def add(self, outcome: str) -> None:
        if outcome == OUTCOME_WIN:
            self.wins += 1
        elif outcome == OUTCOME_LOSS:
            self.losses += 1
        else:
            self.pushes += 1
        self.games_played += 1


@dataclass
class TeamRecordSplits:
    """Overall / home / road / last-ten buckets for one team."""

    overall: RecordSummary = field(default_factory=RecordSummary)
    home: RecordSummary = field(default_factory=RecordSummary)
    road: RecordSummary = field(default_factory=RecordSummary)
    last_ten: RecordSummary = field(default_factory=RecordSummary)

    def add(self, outcome: str, is_home: bool, in_last_ten: bool) -> None:
        self.overall.add(outcome)
        (self.home if is_home else self.road).add(outcome)
        if in_last_ten:
            self.last_ten.add(outcome)


def classify_outcome(team_score: float, opponent_score: float, spread: float = 0.0) -> str:
    """Win / loss / push for ``team_score + spread`` against ``opponent_score``."""
    adjusted = team_score + spread
    # Consensus spreads are float means; treat sub-epsilon residue as level.
    if math.isclose(adjusted, opponent_score, rel_tol=0.0, abs_tol=1e-9):
        return OUTCOME_PUSH
    return OUTCOME_WIN if adjusted > opponent_score else OUTCOME_LOSS


def team_perspective(
    team_id: int,
    game: GameRecord,
    score: Optional[Tuple[int, int]] = None,
) -> Optional[Tuple[bool, float, float]]:
    """
    ``(is_home, team_score, opponent_score)`` for ``team_id`` in ``game``.

    ``score`` overrides the game's own ``(home, away)`` score.  Returns None
    if the team did not play in the game or either score is unusable.
    """
    if not game.involves(team_id):
        return None
    home_score, away_score = score if score is not None else (game.home_score, game.away_score)
    if not (is_finite_number(home_score) and is_finite_number(away_score)):
        return None
    is_home = game.home_team_id == team_id
    if is_home:
        return True, float(home_score), float(away_score)
    return False, float(away_score), float(home_score)


def _ats_cache_key(
    sport: Optional[Sport],
    team_id: int,
    games: Sequence[GameRecord],
    season_year: int,
) -> Optional[Tuple[str, int, int]]:
    if sport is None and games:
        sport = sport_from_id(games[0].sport_id)
    if sport is None:
        return None
    return (sport.value, team_id, season_year)


def final_games_by_recency(games: Iterable[GameRecord]) -> List[GameRecord]:
    return sort_most_recent_first([g for g in games if g.is_final])


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class TeamAggregationService:
    """
    Season games, straight records and ATS summaries for teams.

    Caches are injected so tests can build isolated instances; by default
    each service gets its own pair of 6-hour :class:`TTLCache` objects.
    """

    def __init__(
        self,
        repository: SportsDataRepository,
        consensus: OddsConsensusService,
        games_cache: Optional[TTLCache] = None,
        ats_cache: Optional[TTLCache] = None,
    ):
        self.repository = repository
        self.consensus = consensus
        self.games_cache = games_cache or TTLCache(CACHE_TTL_SECONDS, name="team_games")
        self.ats_cache = ats_cache or TTLCache(CACHE_TTL_SECONDS, name="team_ats")

    # ------------------------------------------------------------------
    # Season games
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_season(sport: Sport, season_year: Optional[int]) -> int:
        return season_year if season_year is not None else current_season_year(sport)

    def team_season_games(
        self,
        sport: Sport,
        team_id: int,
        season_year: Optional[int] = None,
    ) -> List[GameRecord]:
        """All of a team's games for a season, most recent first.  Cached."""
        try:
            season = self.resolve_season(sport, season_year)
            key = (sport.value, team_id, season)
            cached = self.games_cache.get(key)
            if cached is not None:
                return cached

            games = self.repository.find_season_games(sport.sport_id, season, [team_id])
            games = sort_most_recent_first([g for g in games if g.involves(team_id)])
            self.games_cache.set(key, games)
            return games
        except Exception as exc:
            logger.error("Season games lookup failed for team %s (%s): %s", team_id, sport, exc, exc_info=True)
            return []

    def teams_season_games_bulk(
        self,
        sport: Sport,
        team_ids: Sequence[int],
        season_year: Optional[int] = None,
    ) -> Dict[int, List[GameRecord]]:
        """
        Season games for many teams from ONE repository call.

        Results are partitioned per team client-side; each list equals what
        :meth:`team_season_games` returns for that id.  Every requested id is
        present in the result, possibly with an empty list.  Partitions are
        written through to the per-team cache.
        """
        requested = list(dict.fromkeys(team_ids))
        if not requested:
            return {}
        try:
            season = self.resolve_season(sport, season_year)
            games = self.repository.find_season_games(sport.sport_id, season, requested)

            by_team: Dict[int, List[GameRecord]] = {tid: [] for tid in requested}
            for game in games:
                for tid in {game.home_team_id, game.away_team_id}:
                    if tid in by_team:
                        by_team[tid].append(game)

            for tid in requested:
                by_team[tid] = sort_most_recent_first(by_team[tid])
                self.games_cache.set((sport.value, tid, season), by_team[tid])
            return by_team
        except Exception as exc:
            logger.error("Bulk season games lookup failed for %s (%s): %s", requested, sport, exc, exc_info=True)
            return {}

    # ------------------------------------------------------------------
    # Straight-up record
    # ------------------------------------------------------------------

    def compute_record(self, team_id: int, games: Sequence[GameRecord]) -> Optional[TeamRecordSplits]:
        """
        Straight win/loss/push record from final games.

        Independent of input order except for ``last_ten``, which always takes
        the ten most recent finals by date.
        """
        try:
            splits = TeamRecordSplits()
            counted = 0
            for game in final_games_by_recency(games):
                view = team_perspective(team_id, game)
                if view is None:
                    continue
                is_home, team_score, opp_score = view
                splits.add(classify_outcome(team_score, opp_score), is_home, counted < LAST_N_GAMES)
                counted += 1
            return splits
        except Exception as exc:
            logger.error("Record computation failed for team %s: %s", team_id, exc, exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Against the spread
    # ------------------------------------------------------------------

    def compute_ats_summary(
        self,
        team_id: int,
        games: Sequence[GameRecord],
        season_year: int,
        preloaded_odds: Optional[Mapping[str, EventOdds]] = None,
        *,
        sport: Optional[Sport] = None,
        odds_complete: bool = True,
    ) -> Optional[TeamRecordSplits]:
        """
        ATS record against the consensus spread.  Cached per sport + team + season.

        When ``preloaded_odds`` is supplied it is the only odds source (an
        event missing from it has no line); otherwise each final game costs
        one single-event consensus lookup.  The authoritative summed-period
        score from the betting document wins over the game row's score.

        ``sport`` keys the cache; without it the sport is taken from the
        games, and an empty game list with no sport is computed uncached.
        Pass ``odds_complete=False`` when ``preloaded_odds`` came from a
        failed lookup: the summary is still returned but not cached.
        """
        try:
            key = _ats_cache_key(sport, team_id, games, season_year)
            cached = self.ats_cache.get(key) if key is not None else None
            if cached is not None:
                return cached

            degraded = preloaded_odds is not None and not odds_complete
            splits = TeamRecordSplits()
            counted = 0
            for game in final_games_by_recency(games):
                if not game.involves(team_id):
                    continue
                if preloaded_odds is not None:
                    odds = preloaded_odds.get(game.event_id)
                else:
                    odds, ok = self.consensus.lookup_event(game.event_id)
                    degraded = degraded or not ok
                if odds is None:
                    continue

                view = team_perspective(team_id, game, odds.final_score)
                if view is None:
                    continue
                is_home, team_score, opp_score = view

                spread = odds.spread_for(is_home)
                if not is_finite_number(spread):
                    continue

                splits.add(classify_outcome(team_score, opp_score, spread), is_home, counted < LAST_N_GAMES)
                counted += 1

            if degraded:
                logger.warning("ATS for team %s (%s) built without betting data; not cached", team_id, season_year)
            elif key is not None:
                self.ats_cache.set(key, splits)
            return splits
        except Exception as exc:
            logger.error("ATS computation failed for team %s (%s): %s", team_id, season_year, exc, exc_info=True)
            return None


_aggregation_service: Optional[TeamAggregationService] = None


def get_aggregation_service() -> TeamAggregationService:
    global _aggregation_service
    if _aggregation_service is None:
        repository = SportsDataRepository()
        _aggregation_service = TeamAggregationService(repository, OddsConsensusService(repository))
    return _aggregation_service
