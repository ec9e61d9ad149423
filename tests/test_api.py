"""Route-level tests: envelope shape, gateway wiring, quota headers, admin routes."""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

import backend.auth
from backend.main import app
from backend.models import ApiClient, BettingData, Game, SessionLocal
from backend.services import api_clients
from backend.services.aggregation import TeamAggregationService, get_aggregation_service
from backend.services.consensus import OddsConsensusService
from backend.services.matchup import MatchupSummaryService, get_matchup_service
from backend.services.repository import SportsDataRepository
from backend.services.team_stats import TeamStatsService, get_team_stats_service

ADMIN_KEY = "admin-secret"


@pytest.fixture
def api(db, monkeypatch):
    """TestClient with fresh services, no background touches, admin key set."""
    monkeypatch.setattr(backend.auth, "touch_last_used", MagicMock())
    monkeypatch.setenv("ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setenv("SEASON_YEAR_NFL", "2025")

    repository = SportsDataRepository(SessionLocal)
    aggregation = TeamAggregationService(repository, OddsConsensusService(repository))
    app.dependency_overrides[get_aggregation_service] = lambda: aggregation
    app.dependency_overrides[get_matchup_service] = lambda: MatchupSummaryService(aggregation)
    app.dependency_overrides[get_team_stats_service] = lambda: TeamStatsService(repository, aggregation)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _plan(db, plan_id="free", per_minute=10, endpoints=("/games", "/teams"), sports=("CFB", "NFL")):
    return api_clients.upsert_plan(
        db, plan_id, plan_id.title(),
        requests_per_minute=per_minute,
        daily_request_limit=1000,
        monthly_request_limit=10_000,
        allowed_endpoints=list(endpoints),
        allowed_sports=list(sports),
    )


def _key(db, plan_id="free"):
    return api_clients.create_client(db, "Acme", plan_id).api_key


def _seed_games(db):
    db.add_all([
        Game(event_id="401", sport_id=2, season_year=2025, date_event=datetime(2025, 9, 7),
             home_team_id=10, away_team_id=20, home_team="KC", away_team="BAL",
             event_status="STATUS_FINAL", home_score=20, away_score=14),
        Game(event_id="402", sport_id=2, season_year=2025, date_event=datetime(2025, 9, 14),
             home_team_id=30, away_team_id=10, home_team="BUF", away_team="KC",
             event_status="STATUS_FINAL", home_score=21, away_score=24,
             score_by_period={"home": [7, 7, 0, 7], "away": [3, 14, 0, 7]}),
        Game(event_id="403", sport_id=2, season_year=2025, date_event=datetime(2025, 9, 21),
             home_team_id=10, away_team_id=40, event_status="STATUS_SCHEDULED"),
    ])
    db.add_all([
        BettingData(event_id="401", sport_id=2, lines={
            "1": {"spread": {"point_spread_home": -7.0, "point_spread_away": 7.0},
                  "moneyline": {"moneyline_home": -300, "moneyline_away": 240},
                  "total": {"total_over": 47.5, "total_under": 47.5}},
            "2": {"spread": {"point_spread_home": -6.0, "point_spread_away": 6.0},
                  "moneyline": {"moneyline_home": -260, "moneyline_away": 210}},
        }),
        BettingData(event_id="402", sport_id=2, lines={
            "1": {"spread": {"point_spread_home": -2.5, "point_spread_away": 2.5}},
        }),
    ])
    db.commit()


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def test_external_health_needs_no_key(api):
    resp = api.get("/api/external/health")
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["data"]["status"] == "ok"


# ---------------------------------------------------------------------------
# Gateway wiring
# ---------------------------------------------------------------------------

def test_missing_key_envelope(api):
    resp = api.get("/api/external/games?sport=NFL")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Missing API key.", "code": "NO_API_KEY"}


def test_invalid_sport_is_rejected_before_auth(api, db):
    _plan(db)
    key = _key(db)
    resp = api.get("/api/external/games?sport=NHL", headers={"X-API-Key": key})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_SPORT"


def test_invalid_key(api, db):
    _plan(db)
    _key(db)
    resp = api.get("/api/external/games", headers={"X-API-Key": "f" * 64})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_API_KEY"


def test_key_accepted_from_authorization_and_query(api, db):
    _plan(db)
    key = _key(db)
    assert api.get("/api/external/games?sport=NFL", headers={"Authorization": f"ApiKey {key}"}).status_code == 200
    assert api.get(f"/api/external/games?sport=NFL&api_key={key}").status_code == 200


def test_endpoint_not_in_plan(api, db):
    _plan(db, endpoints=("/games",))
    key = _key(db)
    resp = api.get("/api/external/matchups?sport=NFL&home_team_id=10&away_team_id=20", headers={"X-API-Key": key})
    assert resp.status_code == 403
    assert resp.json()["code"] == "ENDPOINT_NOT_ALLOWED"


def test_sport_not_in_plan(api, db):
    _plan(db, sports=("CFB",))
    key = _key(db)
    resp = api.get("/api/external/games?sport=NBA", headers={"X-API-Key": key})
    assert resp.status_code == 403
    assert resp.json()["code"] == "SPORT_NOT_ALLOWED"


def test_minute_limit_over_http(api, db):
    _plan(db, per_minute=2)
    key = _key(db)
    headers = {"X-API-Key": key}

    first = api.get("/api/external/games?sport=NFL", headers=headers)
    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit-Minute"] == "2"
    assert first.headers["X-RateLimit-Used-Minute"] == "1"
    assert first.headers["X-Quota-Used-Day"] == "1"
    assert first.headers["X-Quota-Used-Month"] == "1"

    assert api.get("/api/external/games?sport=NFL", headers=headers).status_code == 200
    third = api.get("/api/external/games?sport=NFL", headers=headers)

    assert third.status_code == 429
    assert third.json()["code"] == "RATE_LIMIT_MINUTE"
    assert third.headers["Retry-After"] == "60"


def test_successful_request_touches_client(api, db):
    _plan(db)
    key = _key(db)
    api.get("/api/external/games?sport=NFL", headers={"X-API-Key": key})
    backend.auth.touch_last_used.assert_called_once()


# ---------------------------------------------------------------------------
# Data routes
# ---------------------------------------------------------------------------

def test_games_for_team(api, db):
    _plan(db)
    key = _key(db)
    _seed_games(db)

    resp = api.get("/api/external/games?sport=NFL&team_id=10&season=2025", headers={"X-API-Key": key})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["sport"] == "NFL"
    assert [g["event_id"] for g in data["games"]] == ["403", "402", "401"]
    assert data["games"][0]["status"] == "scheduled"
    assert data["games"][1]["status"] == "final"


def test_team_records(api, db):
    _plan(db)
    key = _key(db)
    _seed_games(db)

    resp = api.get("/api/external/teams/10/records?sport=NFL&season=2025", headers={"X-API-Key": key})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["record"]["overall"] == {"wins": 2, "losses": 0, "pushes": 0, "games_played": 2}
    # 401: 20 - 6.5 = 13.5 < 14 → ATS loss; 402 (road): 24 + 2.5 > 21 → ATS win
    assert data["ats"]["overall"] == {"wins": 1, "losses": 1, "pushes": 0, "games_played": 2}
    assert data["ats"]["home"]["losses"] == 1
    assert data["ats"]["road"]["wins"] == 1


def test_matchup_route(api, db):
    _plan(db, plan_id="pro", endpoints=("*",))
    key = _key(db, plan_id="pro")
    _seed_games(db)

    resp = api.get(
        "/api/external/matchups?sport=NFL&home_team_id=10&away_team_id=20&season=2025",
        headers={"X-API-Key": key},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["home"]["team_id"] == 10
    assert data["away"]["record"]["overall"]["losses"] == 1
    assert data["away"]["ats"]["overall"]["wins"] == 1


def test_covers_summary_is_internal(api, db):
    _seed_games(db)
    resp = api.get("/api/matchups/covers-summary?sport=NFL&home_team_id=10&away_team_id=20&season=2025")
    assert resp.status_code == 200
    assert resp.json()["data"]["home"]["record"]["overall"]["wins"] == 2


def test_odds_route(api, db):
    _plan(db, endpoints=("/odds",))
    key = _key(db)
    _seed_games(db)

    resp = api.get("/api/external/odds/401", headers={"X-API-Key": key})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["consensus"]["spread_home"] == pytest.approx(-6.5)
    assert data["consensus"]["total_points"] == pytest.approx(47.5)
    assert data["consensus"]["books"] == 2
    assert data["win_probability_home"] + data["win_probability_away"] == pytest.approx(1.0)

    missing = api.get("/api/external/odds/999", headers={"X-API-Key": key})
    assert missing.status_code == 404
    assert missing.json()["code"] == "ODDS_NOT_FOUND"


def test_opponent_stats_route(api, db):
    _plan(db)
    key = _key(db)
    _seed_games(db)

    resp = api.get("/api/external/teams/10/opponent-stats?sport=NFL&season=2025", headers={"X-API-Key": key})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["games_counted"] == 2
    assert data["points_for_per_game"] == pytest.approx(22.0)
    assert data["points_against_per_game"] == pytest.approx(17.5)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

def test_admin_routes_require_admin_key(api):
    assert api.post("/api/admin/api-service/init").status_code == 401
    assert api.post("/api/admin/api-service/init", headers={"X-Admin-Key": "wrong"}).status_code == 401


def test_init_seeds_default_plans(api):
    resp = api.post("/api/admin/api-service/init", headers={"X-Admin-Key": ADMIN_KEY})
    assert resp.status_code == 200
    assert resp.json()["data"]["seeded_plans"] == ["free", "pro"]

    plans = api.get("/api/admin/api-service/plans", headers={"X-Admin-Key": ADMIN_KEY}).json()["data"]["plans"]
    assert {p["id"] for p in plans} == {"free", "pro"}


def test_upsert_plan_fills_defaults_and_validates_sports(api):
    admin = {"X-Admin-Key": ADMIN_KEY}
    resp = api.post(
        "/api/admin/api-service/plans",
        json={"id": "partner", "name": "Partner", "allowed_sports": ["nfl", "cfb"]},
        headers=admin,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["plan_id"] == "partner"

    plans = api.get("/api/admin/api-service/plans", headers=admin).json()["data"]["plans"]
    partner = next(p for p in plans if p["id"] == "partner")
    assert partner["status"] == "active"
    assert partner["monthly_request_limit"] == 50_000
    assert partner["allowed_endpoints"] == ["*"]
    assert partner["allowed_sports"] == ["NFL", "CFB"]

    bad = api.post(
        "/api/admin/api-service/plans",
        json={"id": "broken", "name": "Broken", "allowed_sports": ["NHL"]},
        headers=admin,
    )
    assert bad.status_code == 422


def test_create_list_and_rotate_client(api, db):
    admin = {"X-Admin-Key": ADMIN_KEY}
    api.post("/api/admin/api-service/init", headers=admin)

    created = api.post("/api/admin/api-service/clients", json={"name": "Acme", "plan_id": "free"}, headers=admin)
    assert created.status_code == 201
    issued = created.json()["data"]
    old_key = issued["api_key"]
    assert len(old_key) == 64
    assert issued["key_prefix"] == old_key[:8]
    assert api.get("/api/external/games?sport=NFL", headers={"X-API-Key": old_key}).status_code == 200

    listed = api.get("/api/admin/api-service/clients", headers=admin).json()["data"]["clients"]
    assert len(listed) == 1
    assert "hashed_key" not in listed[0]
    assert "api_key" not in listed[0]

    rotated = api.post(f"/api/admin/api-service/clients/{issued['client_id']}/rotate", headers=admin)
    new_key = rotated.json()["data"]["api_key"]
    assert new_key != old_key
    assert api.get("/api/external/games?sport=NFL", headers={"X-API-Key": old_key}).json()["code"] == "INVALID_API_KEY"
    assert api.get("/api/external/games?sport=NFL", headers={"X-API-Key": new_key}).status_code == 200


def test_create_client_with_unknown_plan(api):
    resp = api.post(
        "/api/admin/api-service/clients",
        json={"name": "Acme", "plan_id": "platinum"},
        headers={"X-Admin-Key": ADMIN_KEY},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "BAD_REQUEST"


def test_rotate_unknown_client(api):
    resp = api.post("/api/admin/api-service/clients/999/rotate", headers={"X-Admin-Key": ADMIN_KEY})
    assert resp.status_code == 404


def test_suspended_client_is_rejected(api, db):
    _plan(db)
    key = _key(db)
    client_id = db.query(ApiClient).one().id

    resp = api.post(
        f"/api/admin/api-service/clients/{client_id}/status?status=suspended",
        headers={"X-Admin-Key": ADMIN_KEY},
    )
    assert resp.json()["data"]["status"] == "suspended"
    assert api.get("/api/external/games?sport=NFL", headers={"X-API-Key": key}).json()["code"] == "INVALID_API_KEY"
