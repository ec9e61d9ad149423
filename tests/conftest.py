"""Shared fixtures: in-memory SQLite database and game/odds builders."""

import os

# Must be set before backend.models builds its engine
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta

import pytest

from backend.models import Base, SessionLocal, engine
from backend.services.consensus import ConsensusLine, EventOdds
from backend.services.repository import GameRecord

BASE_DATE = datetime(2025, 9, 6, 19, 30)


@pytest.fixture
def db():
    """Fresh schema per test on the shared in-memory engine."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def make_game(
    event_id,
    home_team_id,
    away_team_id,
    home_score,
    away_score,
    status="final",
    days=0,
    sport_id=2,
    season_year=2025,
):
    """GameRecord ``days`` after BASE_DATE (``days=None`` for an undated game)."""
    return GameRecord(
        event_id=str(event_id),
        sport_id=sport_id,
        season_year=season_year,
        date_event=None if days is None else BASE_DATE + timedelta(days=days),
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        status=status,
        home_score=home_score,
        away_score=away_score,
    )


def make_odds(event_id, spread_home=None, spread_away=None, final_score=None, **consensus):
    return EventOdds(
        event_id=str(event_id),
        consensus=ConsensusLine(spread_home=spread_home, spread_away=spread_away, books=1, **consensus),
        final_score=final_score,
    )


def book_line(spread_home=None, spread_away=None, ml_home=None, ml_away=None, over=None, under=None):
    """One sportsbook's line in the betting_data document shape."""
    line = {"affiliate": {"affiliate_name": "book"}}
    if spread_home is not None or spread_away is not None:
        line["spread"] = {"point_spread_home": spread_home, "point_spread_away": spread_away}
    if ml_home is not None or ml_away is not None:
        line["moneyline"] = {"moneyline_home": ml_home, "moneyline_away": ml_away}
    if over is not None or under is not None:
        line["total"] = {"total_over": over, "total_under": under}
    return line


class FakeClock:
    """Monotonic clock stand-in; advance() instead of sleeping."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
