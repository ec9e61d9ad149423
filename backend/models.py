"""
Database models for the sports analytics backend
SQLAlchemy ORM with PostgreSQL (SQLite for local tests)

Two groups of tables live here:

* Read-only sports data: ``games``, ``betting_data``, ``team_stats``.
  Written by the upstream ingestion jobs, only ever queried by this service.
* API service state: ``api_plans``, ``api_clients`` and the usage counters
  (``api_usage_minute`` / ``api_usage_daily`` / ``api_usage_monthly`` /
  ``api_usage_endpoint``).  Counter rows use a composite string primary key
  (``"<client_id>:<window>"``) so a single ``INSERT ... ON CONFLICT`` can
  increment-or-create them atomically.
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Text,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from sqlalchemy.pool import StaticPool
from datetime import datetime, timezone
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://postgres@127.0.0.1:5432/sportstats")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column here stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _engine_kwargs(url: str) -> dict:
    # In-memory SQLite must share one connection across threads or every
    # session would see an empty database.
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ============================================================================
# SPORTS DATA (read-only)
# ============================================================================

class Game(Base):
    """One scheduled or played game"""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, index=True, nullable=False)
    sport_id = Column(Integer, nullable=False, index=True)
    season_year = Column(Integer, nullable=False, index=True)
    season_type = Column(String)
    date_event = Column(DateTime, index=True)

    home_team_id = Column(Integer, nullable=False, index=True)
    away_team_id = Column(Integer, nullable=False, index=True)
    home_team = Column(String)
    away_team = Column(String)
    neutral_site = Column(Boolean, default=False)

    # Raw provider status ("STATUS_FINAL", "completed", ...); normalised on read
    event_status = Column(String)

    home_score = Column(Integer)
    away_score = Column(Integer)
    score_by_period = Column(JSON)  # {"home": [7, 3, ...], "away": [...]}

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class BettingData(Base):
    """All sportsbook lines for one event"""

    __tablename__ = "betting_data"

    event_id = Column(String, primary_key=True)
    sport_id = Column(Integer, index=True)
    event_date = Column(DateTime)

    # {sportsbook_id: {"affiliate": {...}, "spread": {...},
    #                  "moneyline": {...}, "total": {...}}}
    lines = Column(JSON, nullable=False, default=dict)

    # Authoritative final score when present:
    # {"score_home_by_period": [...], "score_away_by_period": [...]}
    score = Column(JSON)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class TeamStats(Base):
    """Season stat sheet for a team (list of named stats)"""

    __tablename__ = "team_stats"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, nullable=False, index=True)
    sport_id = Column(Integer, nullable=False, index=True)
    season_year = Column(Integer, nullable=False, index=True)

    # [{"stat_id": 1, "name": "totalPoints", "display_name": "Total Points",
    #   "value": 412.0, "per_game_value": 34.3}, ...]
    stats = Column(JSON, nullable=False, default=list)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("team_id", "sport_id", "season_year", name="_team_stats_season_uc"),
    )


# ============================================================================
# API SERVICE
# ============================================================================

class ApiPlan(Base):
    """Quota and access-control bundle assigned to API clients"""

    __tablename__ = "api_plans"

    id = Column(String, primary_key=True)  # "free", "pro", ...
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")  # active | inactive

    requests_per_minute = Column(Integer, nullable=False)
    daily_request_limit = Column(Integer, nullable=False)
    monthly_request_limit = Column(Integer, nullable=False)

    allowed_endpoints = Column(JSON, nullable=False, default=list)  # ["/games"] or ["*"]
    allowed_sports = Column(JSON, default=list)  # empty → unrestricted

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    clients = relationship("ApiClient", back_populates="plan")


class ApiClient(Base):
    """External API consumer.  Only the SHA-256 of the key is stored."""

    __tablename__ = "api_clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    contact_email = Column(String)
    plan_id = Column(String, ForeignKey("api_plans.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="active")  # active | suspended

    hashed_key = Column(String, nullable=False, unique=True, index=True)
    key_prefix = Column(String, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow)
    last_used_at = Column(DateTime)
    notes = Column(Text)

    plan = relationship("ApiPlan", back_populates="clients")


class ApiUsageMinute(Base):
    """Fixed one-minute request window"""

    __tablename__ = "api_usage_minute"

    id = Column(String, primary_key=True)  # "<client_id>:<YYYY-MM-DDTHH:MM>"
    client_id = Column(Integer, nullable=False, index=True)
    minute = Column(String, nullable=False)
    count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    # Cleanup only; the window itself is defined by ``minute``
    expires_at = Column(DateTime, nullable=False, index=True)


class ApiUsageDaily(Base):
    """UTC calendar-day quota counter"""

    __tablename__ = "api_usage_daily"

    id = Column(String, primary_key=True)  # "<client_id>:<YYYY-MM-DD>"
    client_id = Column(Integer, nullable=False, index=True)
    day = Column(String, nullable=False)
    total = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (UniqueConstraint("client_id", "day", name="_usage_daily_client_day_uc"),)


class ApiUsageMonthly(Base):
    """UTC calendar-month quota counter"""

    __tablename__ = "api_usage_monthly"

    id = Column(String, primary_key=True)  # "<client_id>:<YYYY-MM>"
    client_id = Column(Integer, nullable=False, index=True)
    month = Column(String, nullable=False)
    total = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (UniqueConstraint("client_id", "month", name="_usage_monthly_client_month_uc"),)


class ApiUsageEndpoint(Base):
    """Per-endpoint diagnostic sub-count for the day and month windows"""

    __tablename__ = "api_usage_endpoint"

    id = Column(String, primary_key=True)  # "<client_id>:<window_key>:<endpoint>"
    client_id = Column(Integer, nullable=False, index=True)
    period = Column(String, nullable=False)  # "day" | "month"
    window_key = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow)


# Create all tables
def init_db():
    """Initialize database tables"""
    Base.metadata.create_all(bind=engine)
    print("✅ Database tables created")


if __name__ == "__main__":
    init_db()
