"""
Head-to-head matchup summary.

Composes the aggregation engine for a home/away pairing while keeping the
query count flat:

    1. ONE bulk games fetch for both teams.
    2. Straight records for both sides (pure, no I/O).
    3. ONE batched consensus lookup over the union of both teams' final
       event ids (a game between the two teams appears once).
    4. ATS summaries for both sides, fed from that preloaded odds map.

The finished summary is cached per (sport, season, home id, away id), unless
the odds batch failed.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from backend.core.sport_config import Sport
from backend.services.aggregation import (
    CACHE_TTL_SECONDS,
    TeamAggregationService,
    TeamRecordSplits,
    get_aggregation_service,
)
from backend.services.cache import TTLCache
from backend.services.repository import GameRecord

logger = logging.getLogger(__name__)


@dataclass
class TeamSummary:
    team_id: int
    record: TeamRecordSplits
    ats: TeamRecordSplits


@dataclass
class MatchupSummary:
    sport: str
    season_year: int
    home: TeamSummary
    away: TeamSummary


def final_event_ids(*game_lists: List[GameRecord]) -> List[str]:
    """Union of final-game event ids, first-seen order, no duplicates."""
    seen: Dict[str, None] = {}
    for games in game_lists:
        for game in games:
            if game.is_final:
                seen.setdefault(game.event_id, None)
    return list(seen)


class MatchupSummaryService:
    """Builds and caches :class:`MatchupSummary` objects."""

    def __init__(self, aggregation: TeamAggregationService, cache: Optional[TTLCache] = None):
        self.aggregation = aggregation
        self.cache = cache or TTLCache(CACHE_TTL_SECONDS, name="matchup_summary")

    def build_team_summary(
        self,
        sport: Sport,
        team_id: int,
        season_year: Optional[int] = None,
    ) -> Optional[TeamSummary]:
        """Straight + ATS records for a single team, one odds batch.  None on failure."""
        try:
            season = self.aggregation.resolve_season(sport, season_year)
            games = self.aggregation.team_season_games(sport, team_id, season)
            record = self.aggregation.compute_record(team_id, games)
            odds, odds_ok = self.aggregation.consensus.lookup_events(final_event_ids(games))
            ats = self.aggregation.compute_ats_summary(
                team_id, games, season, preloaded_odds=odds, sport=sport, odds_complete=odds_ok
            )
            return TeamSummary(
                team_id=team_id,
                record=record or TeamRecordSplits(),
                ats=ats or TeamRecordSplits(),
            )
        except Exception as exc:
            logger.error("Team summary failed for %s (%s): %s", team_id, sport, exc, exc_info=True)
            return None

    def build_matchup_summary(
        self,
        sport: Sport,
        home_team_id: int,
        away_team_id: int,
        season_year: Optional[int] = None,
    ) -> Optional[MatchupSummary]:
        """Straight + ATS records for both sides.  None on failure."""
        try:
            season = self.aggregation.resolve_season(sport, season_year)
            key = (sport.value, season, home_team_id, away_team_id)
            cached = self.cache.get(key)
            if cached is not None:
                return cached

            games_by_team = self.aggregation.teams_season_games_bulk(
                sport, [home_team_id, away_team_id], season
            )
            if not games_by_team:
                # Bulk fetch degraded; don't cache an all-zero summary
                return None
            home_games = games_by_team.get(home_team_id, [])
            away_games = games_by_team.get(away_team_id, [])

            home_record = self.aggregation.compute_record(home_team_id, home_games)
            away_record = self.aggregation.compute_record(away_team_id, away_games)

            odds, odds_ok = self.aggregation.consensus.lookup_events(final_event_ids(home_games, away_games))
            logger.debug(
                "Matchup %s %s@%s: %d/%d games, %d events with odds",
                sport.value, away_team_id, home_team_id, len(home_games), len(away_games), len(odds),
            )

            home_ats = self.aggregation.compute_ats_summary(
                home_team_id, home_games, season, preloaded_odds=odds, sport=sport, odds_complete=odds_ok
            )
            away_ats = self.aggregation.compute_ats_summary(
                away_team_id, away_games, season, preloaded_odds=odds, sport=sport, odds_complete=odds_ok
            )

            summary = MatchupSummary(
                sport=sport.value,
                season_year=season,
                home=TeamSummary(
                    team_id=home_team_id,
                    record=home_record or TeamRecordSplits(),
                    ats=home_ats or TeamRecordSplits(),
                ),
                away=TeamSummary(
                    team_id=away_team_id,
                    record=away_record or TeamRecordSplits(),
                    ats=away_ats or TeamRecordSplits(),
                ),
            )
            if odds_ok:
                self.cache.set(key, summary)
            else:
                logger.warning(
                    "Matchup %s %s@%s built without betting data; not cached",
                    sport.value, away_team_id, home_team_id,
                )
            return summary
        except Exception as exc:
            logger.error(
                "Matchup summary failed for %s %s@%s: %s",
                sport, away_team_id, home_team_id, exc, exc_info=True,
            )
            return None


_matchup_service: Optional[MatchupSummaryService] = None


def get_matchup_service() -> MatchupSummaryService:
    global _matchup_service
    if _matchup_service is None:
        _matchup_service = MatchupSummaryService(get_aggregation_service())
    return _matchup_service
