"""
FastAPI application for the sports stats API
External keyed endpoints, internal matchup summary, admin provisioning
"""

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from typing import Optional
import logging
import os

from backend.models import get_db, SessionLocal, utcnow
from backend.auth import (
    ApiAccessError,
    AuthenticatedClient,
    require_api_access,
    resolve_sport,
    verify_admin_key,
)
from backend.services import api_clients
from backend.services.aggregation import TeamAggregationService, get_aggregation_service
from backend.services.consensus import OddsConsensusService
from backend.services.matchup import MatchupSummaryService, get_matchup_service
from backend.services.quota import purge_expired_minute_windows
from backend.services.team_stats import TeamStatsService, get_team_stats_service
from backend.schemas import (
    ClientCreate,
    ClientOut,
    ConsensusOut,
    EventOddsResponse,
    GameOut,
    GamesResponse,
    IssuedKeyOut,
    MatchupSummaryOut,
    OpponentSplitsOut,
    PlanOut,
    PlanUpsert,
    TeamRecordSplitsOut,
    TeamRecordsResponse,
)

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0"

# Scheduler instance
scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("🚀 Starting sports stats API (%s)", os.getenv("ENVIRONMENT", "development"))

    purge_interval = int(os.getenv("USAGE_PURGE_INTERVAL_MIN", "30"))
    scheduler.add_job(
        _purge_usage_job,
        IntervalTrigger(minutes=purge_interval),
        id="purge_minute_usage",
        name="Purge Expired Minute Usage Windows",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started: minute-usage purge every %dmin", purge_interval)

    yield

    logger.info("👋 Shutting down sports stats API")
    scheduler.shutdown()


app = FastAPI(
    title="Sports Stats API",
    description="Team records, ATS splits and consensus odds for CFB, NFL, NCAAB and NBA",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS only when origins are configured; otherwise no CORS headers at all
_cors_origins = [o.strip() for o in os.getenv("API_CORS_ORIGINS", "").split(",") if o.strip()]
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "Retry-After",
            "X-RateLimit-Limit-Minute",
            "X-RateLimit-Used-Minute",
            "X-Quota-Limit-Day",
            "X-Quota-Used-Day",
            "X-Quota-Limit-Month",
            "X-Quota-Used-Month",
        ],
    )


def ok(data) -> dict:
    return {"success": True, "data": data}


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _purge_usage_job():
    """Delete minute-usage rows past their expiry; runs every 30 min by default."""
    db = SessionLocal()
    try:
        deleted = purge_expired_minute_windows(db)
        if deleted:
            logger.info("Purged %d expired minute-usage rows", deleted)
    except Exception as exc:
        logger.error("Minute-usage purge failed: %s", exc, exc_info=True)
    finally:
        db.close()


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check"""
    return {
        "app": "Sports Stats API",
        "version": APP_VERSION,
        "status": "operational",
        "timestamp": utcnow().isoformat(),
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


@app.get("/api/external/health")
async def external_health():
    """Unauthenticated liveness probe for API consumers."""
    return ok({"status": "ok", "timestamp": utcnow().isoformat()})


# ============================================================================
# EXTERNAL ENDPOINTS (API key + quotas)
# ============================================================================

@app.get("/api/external/games")
def get_games(
    sport: str = Query("CFB", description="CFB | NFL | NCAAB | NBA"),
    team_id: Optional[int] = Query(None, description="Only games involving this team"),
    season: Optional[int] = Query(None, description="Season year (defaults to current)"),
    client: AuthenticatedClient = Depends(require_api_access("/games")),
    aggregation: TeamAggregationService = Depends(get_aggregation_service),
):
    """Season games for a sport, or for one team, most recent first."""
    sport_code = resolve_sport(sport)
    season_year = aggregation.resolve_season(sport_code, season)

    if team_id is not None:
        games = aggregation.team_season_games(sport_code, team_id, season_year)
    else:
        games = aggregation.repository.find_games(sport_code.sport_id, season_year)

    payload = GamesResponse(
        sport=sport_code.value,
        season_year=season_year,
        team_id=team_id,
        games=[GameOut.model_validate(g) for g in games],
    )
    return ok(payload)


@app.get("/api/external/teams/{team_id}/records")
def get_team_records(
    team_id: int,
    sport: str = Query("CFB"),
    season: Optional[int] = Query(None),
    client: AuthenticatedClient = Depends(require_api_access("/teams")),
    matchups: MatchupSummaryService = Depends(get_matchup_service),
):
    """Straight-up and against-the-spread records for one team."""
    sport_code = resolve_sport(sport)
    season_year = matchups.aggregation.resolve_season(sport_code, season)

    summary = matchups.build_team_summary(sport_code, team_id, season_year)
    if summary is None:
        raise ApiAccessError(500, "RECORDS_FETCH_FAILED", "Failed to compute team records.")

    return ok(TeamRecordsResponse(
        sport=sport_code.value,
        team_id=team_id,
        season_year=season_year,
        record=TeamRecordSplitsOut.model_validate(summary.record),
        ats=TeamRecordSplitsOut.model_validate(summary.ats),
    ))


@app.get("/api/external/teams/{team_id}/opponent-stats")
def get_opponent_stats(
    team_id: int,
    sport: str = Query("CFB"),
    season: Optional[int] = Query(None),
    client: AuthenticatedClient = Depends(require_api_access("/teams")),
    team_stats: TeamStatsService = Depends(get_team_stats_service),
):
    """Points for/against per game plus defensive stats from the team's stat sheet."""
    sport_code = resolve_sport(sport)
    splits = team_stats.opponent_splits(sport_code, team_id, season)
    if splits is None:
        raise ApiAccessError(500, "OPPONENT_STATS_FETCH_FAILED", "Failed to compute opponent stats.")
    return ok(OpponentSplitsOut.model_validate(splits))


@app.get("/api/external/matchups")
def get_matchup(
    home_team_id: int = Query(...),
    away_team_id: int = Query(...),
    sport: str = Query("CFB"),
    season: Optional[int] = Query(None),
    client: AuthenticatedClient = Depends(require_api_access("/matchups")),
    matchups: MatchupSummaryService = Depends(get_matchup_service),
):
    """Records and ATS splits for both sides of a matchup."""
    sport_code = resolve_sport(sport)
    summary = matchups.build_matchup_summary(sport_code, home_team_id, away_team_id, season)
    if summary is None:
        raise ApiAccessError(500, "MATCHUP_FETCH_FAILED", "Failed to build matchup summary.")
    return ok(MatchupSummaryOut.model_validate(summary))


@app.get("/api/external/odds/{event_id}")
def get_event_odds(
    event_id: str,
    client: AuthenticatedClient = Depends(require_api_access("/odds", sport_scoped=False)),
    aggregation: TeamAggregationService = Depends(get_aggregation_service),
):
    """Consensus line across sportsbooks and vig-free win probabilities."""
    odds = aggregation.consensus.consensus_for_event(event_id)
    if odds is None:
        raise ApiAccessError(404, "ODDS_NOT_FOUND", "No betting lines for this event.")

    p_home, p_away = odds.consensus.win_probability
    home_score, away_score = odds.final_score or (None, None)
    return ok(EventOddsResponse(
        event_id=odds.event_id,
        consensus=ConsensusOut.model_validate(odds.consensus),
        win_probability_home=p_home,
        win_probability_away=p_away,
        final_score_home=home_score,
        final_score_away=away_score,
    ))


# ============================================================================
# INTERNAL ENDPOINTS (web client, no key)
# ============================================================================

@app.get("/api/matchups/covers-summary")
def get_covers_summary(
    home_team_id: int = Query(...),
    away_team_id: int = Query(...),
    sport: str = Query("CFB"),
    season: Optional[int] = Query(None),
    matchups: MatchupSummaryService = Depends(get_matchup_service),
):
    """Matchup page summary: same data as the external matchups endpoint."""
    sport_code = resolve_sport(sport)
    summary = matchups.build_matchup_summary(sport_code, home_team_id, away_team_id, season)
    if summary is None:
        raise ApiAccessError(500, "MATCHUP_FETCH_FAILED", "Failed to build matchup summary.")
    return ok(MatchupSummaryOut.model_validate(summary))


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/api/admin/api-service/init")
def init_api_service(
    user: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    """Seed (upsert) the default plans."""
    seeded = api_clients.seed_default_plans(db)
    return ok({"seeded_plans": seeded})


@app.get("/api/admin/api-service/plans")
def list_api_plans(
    user: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    return ok({"plans": [PlanOut.model_validate(p) for p in api_clients.list_plans(db)]})


@app.post("/api/admin/api-service/plans")
def upsert_api_plan(
    body: PlanUpsert,
    user: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    """Create or update a plan (admin only)."""
    fields = body.model_dump(exclude={"id", "name"})
    plan = api_clients.upsert_plan(db, body.id, body.name, **fields)
    logger.info("Plan %s upserted by %s", plan.id, user)
    return ok({"plan_id": plan.id})


@app.get("/api/admin/api-service/clients")
def list_api_clients(
    user: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    """Newest 200 clients, without key hashes."""
    clients = api_clients.list_clients(db)
    return ok({"clients": [ClientOut.model_validate(c) for c in clients]})


@app.post("/api/admin/api-service/clients", status_code=201)
def create_api_client(
    body: ClientCreate,
    user: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    """
    Create a client and issue its key (admin only).

    The raw key is in this response and nowhere else.
    """
    if not any(p.id == body.plan_id for p in api_clients.list_plans(db)):
        raise ApiAccessError(400, "BAD_REQUEST", f"Unknown plan: {body.plan_id}")
    issued = api_clients.create_client(
        db,
        name=body.name,
        plan_id=body.plan_id,
        contact_email=body.contact_email,
        notes=body.notes,
    )
    return ok(IssuedKeyOut.model_validate(issued))


@app.post("/api/admin/api-service/clients/{client_id}/rotate")
def rotate_api_client_key(
    client_id: int,
    user: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    """Issue a new key for a client; the old one stops working immediately."""
    issued = api_clients.rotate_client_key(db, client_id)
    if issued is None:
        raise ApiAccessError(404, "NOT_FOUND", "Client not found.")
    return ok(IssuedKeyOut.model_validate(issued))


@app.post("/api/admin/api-service/clients/{client_id}/status")
def set_api_client_status(
    client_id: int,
    status: str = Query(..., pattern="^(active|suspended)$"),
    user: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    """Suspend or reactivate a client (admin only)."""
    client = api_clients.set_client_status(db, client_id, status)
    if client is None:
        raise ApiAccessError(404, "NOT_FOUND", "Client not found.")
    logger.info("Client %s (%s) set to %s by %s", client.id, client.key_prefix, status, user)
    return ok(ClientOut.model_validate(client))


@app.get("/admin/scheduler/status")
async def get_scheduler_status(user: str = Depends(verify_admin_key)):
    """Get scheduler job status"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        })

    return {
        "running": scheduler.running,
        "jobs": jobs,
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(ApiAccessError)
async def api_access_error_handler(request: Request, exc: ApiAccessError):
    """Typed API errors → {"success": false, "error", "code"}"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
