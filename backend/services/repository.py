"""
Read-only access to the games and betting tables.

The repository is the only place the aggregation engine touches SQLAlchemy.
Every method opens its own short-lived session, converts ORM rows into plain
dataclasses (safe to cache and share across threads once the session is
closed), and closes the session again.

Query shape is the performance contract:

* :meth:`SportsDataRepository.find_season_games` - ONE query for any number of
  team ids (``home_team_id IN (...) OR away_team_id IN (...)``).
* :meth:`SportsDataRepository.find_betting_documents` - ONE query for any
  number of event ids.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backend.core.odds_math import finite_values
from backend.models import BettingData, Game, SessionLocal, TeamStats

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Status normalisation
# ---------------------------------------------------------------------------

GAME_STATUSES = ("scheduled", "live", "final", "postponed", "cancelled")

_STATUS_ALIASES: Dict[str, str] = {
    "status_scheduled": "scheduled",
    "scheduled": "scheduled",
    "upcoming": "scheduled",
    "status_inprogress": "live",
    "status_live": "live",
    "inprogress": "live",
    "live": "live",
    "status_final": "final",
    "status_completed": "final",
    "final": "final",
    "completed": "final",
    "status_postponed": "postponed",
    "postponed": "postponed",
    "status_cancelled": "cancelled",
    "cancelled": "cancelled",
}


def normalize_event_status(raw: Optional[str]) -> str:
    """Map a provider status string onto :data:`GAME_STATUSES`.

    Unknown or missing values fall back to ``"scheduled"`` so they are never
    aggregated as finished games.
    """
    if not raw:
        return "scheduled"
    return _STATUS_ALIASES.get(raw.strip().lower(), "scheduled")


def sum_periods(periods: Any) -> Optional[int]:
    """Sum a score-by-period array.  None if it has no numeric entries."""
    if not isinstance(periods, (list, tuple)):
        return None
    values = finite_values(periods)
    if not values:
        return None
    return int(round(sum(values)))


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GameRecord:
    """Immutable snapshot of a ``games`` row."""

    event_id: str
    sport_id: int
    season_year: int
    date_event: Optional[datetime]
    home_team_id: int
    away_team_id: int
    status: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.status == "final"

    def involves(self, team_id: int) -> bool:
        return team_id in (self.home_team_id, self.away_team_id)


@dataclass
class BettingDocument:
    """All sportsbook lines for one event, plus its authoritative score."""

    event_id: str
    lines: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    score: Optional[Dict[str, Any]] = None


@dataclass
class TeamStatSheet:
    team_id: int
    season_year: int
    stats: List[Dict[str, Any]] = field(default_factory=list)


def game_to_record(game: Game) -> GameRecord:
    """Convert an ORM row, applying the score-by-period override."""
    home_score = game.home_score
    away_score = game.away_score

    periods = game.score_by_period or {}
    if isinstance(periods, dict):
        home_sum = sum_periods(periods.get("home"))
        away_sum = sum_periods(periods.get("away"))
        if home_sum is not None and away_sum is not None:
            home_score, away_score = home_sum, away_sum

    return GameRecord(
        event_id=str(game.event_id),
        sport_id=game.sport_id,
        season_year=game.season_year,
        date_event=game.date_event,
        home_team_id=game.home_team_id,
        away_team_id=game.away_team_id,
        status=normalize_event_status(game.event_status),
        home_score=home_score,
        away_score=away_score,
        home_team=game.home_team,
        away_team=game.away_team,
    )


def sort_most_recent_first(games: Sequence[GameRecord]) -> List[GameRecord]:
    """Newest first; games without a date sort last.  Ties break on event id."""
    return sorted(
        games,
        key=lambda g: (g.date_event is not None, g.date_event or datetime.min, g.event_id),
        reverse=True,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class SportsDataRepository:
    """SQLAlchemy-backed reads of games, betting lines and team stats."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def find_season_games(
        self,
        sport_id: int,
        season_year: int,
        team_ids: Sequence[int],
    ) -> List[GameRecord]:
        """All games in which any of ``team_ids`` played either side."""
        if not team_ids:
            return []
        ids = list(team_ids)

        db: Session = self._session_factory()
        try:
            rows = (
                db.query(Game)
                .filter(
                    Game.sport_id == sport_id,
                    Game.season_year == season_year,
                    or_(Game.home_team_id.in_(ids), Game.away_team_id.in_(ids)),
                )
                .order_by(Game.date_event.desc())
                .all()
            )
            return [game_to_record(g) for g in rows]
        finally:
            db.close()

    def find_games(self, sport_id: int, season_year: int, limit: int = 200) -> List[GameRecord]:
        """A season's games for a sport, most recent first."""
        db: Session = self._session_factory()
        try:
            rows = (
                db.query(Game)
                .filter(Game.sport_id == sport_id, Game.season_year == season_year)
                .order_by(Game.date_event.desc())
                .limit(limit)
                .all()
            )
            return [game_to_record(g) for g in rows]
        finally:
            db.close()

    def find_betting_documents(self, event_ids: Sequence[str]) -> Dict[str, BettingDocument]:
        """Betting documents keyed by event id; events with no row are absent."""
        if not event_ids:
            return {}
        ids = list(dict.fromkeys(str(e) for e in event_ids))

        db: Session = self._session_factory()
        try:
            rows = db.query(BettingData).filter(BettingData.event_id.in_(ids)).all()
            return {
                str(row.event_id): BettingDocument(
                    event_id=str(row.event_id),
                    lines=row.lines or {},
                    score=row.score,
                )
                for row in rows
            }
        finally:
            db.close()

    def find_team_stats(
        self,
        sport_id: int,
        team_id: int,
        season_year: int,
    ) -> Optional[TeamStatSheet]:
        db: Session = self._session_factory()
        try:
            row = (
                db.query(TeamStats)
                .filter(
                    TeamStats.sport_id == sport_id,
                    TeamStats.team_id == team_id,
                    TeamStats.season_year == season_year,
                )
                .first()
            )
            if row is None:
                return None
            return TeamStatSheet(team_id=row.team_id, season_year=row.season_year, stats=row.stats or [])
        finally:
            db.close()
