"""
Pydantic request/response schemas for the sports stats API.

Service-layer results are plain dataclasses; these models read them with
``from_attributes`` so the OpenAPI docs describe exactly what is returned
and nothing else (``hashed_key`` in particular never reaches a response).
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from backend.core.sport_config import parse_sport


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class RecordSummaryOut(BaseModel):
    wins: int
    losses: int
    pushes: int
    games_played: int

    model_config = {"from_attributes": True}


class TeamRecordSplitsOut(BaseModel):
    """Overall / home / road / last-ten buckets."""
    overall: RecordSummaryOut
    home: RecordSummaryOut
    road: RecordSummaryOut
    last_ten: RecordSummaryOut

    model_config = {"from_attributes": True}


class TeamRecordsResponse(BaseModel):
    """Payload for /api/external/teams/{team_id}/records."""
    sport: str
    team_id: int
    season_year: int
    record: TeamRecordSplitsOut
    ats: TeamRecordSplitsOut


class TeamSummaryOut(BaseModel):
    team_id: int
    record: TeamRecordSplitsOut
    ats: TeamRecordSplitsOut

    model_config = {"from_attributes": True}


class MatchupSummaryOut(BaseModel):
    """Straight-up and ATS records for both sides of a matchup."""
    sport: str
    season_year: int
    home: TeamSummaryOut
    away: TeamSummaryOut

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Games & odds
# ---------------------------------------------------------------------------

class GameOut(BaseModel):
    event_id: str
    sport_id: int
    season_year: int
    date_event: Optional[datetime]
    status: str
    home_team_id: int
    away_team_id: int
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    model_config = {"from_attributes": True}


class GamesResponse(BaseModel):
    sport: str
    season_year: int
    team_id: Optional[int] = None
    games: List[GameOut]


class ConsensusOut(BaseModel):
    """Mean line across books; any field may be null if no book quotes it."""
    spread_home: Optional[float] = None
    spread_away: Optional[float] = None
    total_points: Optional[float] = None
    moneyline_home: Optional[float] = None
    moneyline_away: Optional[float] = None
    books: int = 0

    model_config = {"from_attributes": True}


class EventOddsResponse(BaseModel):
    """Payload for /api/external/odds/{event_id}."""
    event_id: str
    consensus: ConsensusOut
    win_probability_home: Optional[float] = None
    win_probability_away: Optional[float] = None
    final_score_home: Optional[int] = None
    final_score_away: Optional[int] = None


# ---------------------------------------------------------------------------
# Opponent splits
# ---------------------------------------------------------------------------

class OpponentSplitsOut(BaseModel):
    team_id: int
    season_year: int
    games_counted: int
    points_for_per_game: Optional[float] = None
    points_against_per_game: Optional[float] = None
    defensive: dict = Field(default_factory=dict)

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class PlanUpsert(BaseModel):
    """
    Payload for POST /api/admin/api-service/plans.

    Omitted limits fall back to 10/min, 1000/day, 50,000/month and
    ``["*"]`` endpoints.
    """

    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=120)
    status: Optional[str] = None
    requests_per_minute: Optional[int] = Field(None, ge=1)
    daily_request_limit: Optional[int] = Field(None, ge=1)
    monthly_request_limit: Optional[int] = Field(None, ge=1)
    allowed_endpoints: Optional[List[str]] = None
    allowed_sports: Optional[List[str]] = None

    @field_validator("allowed_sports")
    @classmethod
    def validate_sports(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        unknown = [s for s in v if parse_sport(s) is None]
        if unknown:
            raise ValueError(f"Unknown sport codes: {', '.join(unknown)}")
        return [s.strip().upper() for s in v]


class PlanOut(BaseModel):
    id: str
    name: str
    status: str
    requests_per_minute: int
    daily_request_limit: int
    monthly_request_limit: int
    allowed_endpoints: List[str]
    allowed_sports: Optional[List[str]] = None

    model_config = {"from_attributes": True}


class ClientCreate(BaseModel):
    """Payload for POST /api/admin/api-service/clients."""

    name: str = Field(..., min_length=1, max_length=120)
    plan_id: str = Field(..., min_length=1, max_length=64)
    contact_email: Optional[str] = Field(None, max_length=254)
    notes: Optional[str] = Field(None, max_length=1000)

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Acme Picks",
                "plan_id": "pro",
                "contact_email": "dev@acme.example",
            }
        }
    }


class ClientOut(BaseModel):
    """API client as listed to admins.  No key material beyond the prefix."""
    id: int
    name: str
    contact_email: Optional[str] = None
    plan_id: str
    status: str
    key_prefix: str
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class IssuedKeyOut(BaseModel):
    """Returned once on create / rotate.  Store ``api_key`` now."""
    client_id: int
    api_key: str
    key_prefix: str

    model_config = {"from_attributes": True}
