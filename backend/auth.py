"""
API key gateway for external consumers

Keys are opaque 64-char hex strings.  Only their SHA-256 is stored, plus an
8-char prefix for support lookups.  A request is admitted when:

    key present → hash matches an ACTIVE client → client's plan is ACTIVE
    → endpoint allowed by plan → sport allowed by plan

and then passes the quota enforcer.  Unknown and suspended keys produce the
same INVALID_API_KEY error so callers can't probe which keys exist.  Raw keys
are never logged or echoed back.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import hashlib
import logging
import os
import re
import secrets

from fastapi import Depends, Request, Response, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session
from dotenv import load_dotenv

from backend.core.sport_config import DEFAULT_SPORT, Sport, parse_sport
from backend.models import ApiClient, ApiPlan, SessionLocal, get_db, utcnow
from backend.services.quota import enforce_limits

load_dotenv()

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)
ADMIN_KEY_HEADER = APIKeyHeader(name="X-Admin-Key", auto_error=False)
API_KEY_QUERY_PARAM = "api_key"

_AUTH_SCHEME = re.compile(r"^(apikey|bearer)\s+", re.IGNORECASE)

# Best-effort last_used_at stamping runs here, off the request path
_TOUCH_EXECUTOR = ThreadPoolExecutor(max_workers=2, thread_name_prefix="api-key-touch")


class ApiAccessError(Exception):
    """Typed API failure rendered as ``{"success": false, "error", "code"}``."""

    def __init__(self, status_code: int, code: str, message: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.headers = headers or {}


# ============================================================================
# KEY MATERIAL
# ============================================================================

def generate_api_key() -> str:
    """32 random bytes as 64 hex chars."""
    return secrets.token_hex(32)


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def get_key_prefix(key: str) -> str:
    return key[:8]


def extract_api_key(
    header_key: Optional[str],
    authorization: Optional[str],
    query_key: Optional[str],
) -> Optional[str]:
    """
    First present source wins:

        X-API-Key header  >  Authorization: ApiKey|Bearer <key>  >  ?api_key=
    """
    if header_key and header_key.strip():
        return header_key.strip()

    if authorization:
        value = authorization.strip()
        if _AUTH_SCHEME.match(value):
            key = _AUTH_SCHEME.sub("", value).strip()
            if key:
                return key

    if query_key and query_key.strip():
        return query_key.strip()
    return None


# ============================================================================
# PLANS
# ============================================================================

@dataclass(frozen=True)
class PlanLimits:
    """Detached copy of an ``api_plans`` row."""

    plan_id: str
    name: str
    requests_per_minute: int
    daily_request_limit: int
    monthly_request_limit: int
    allowed_endpoints: List[str] = field(default_factory=list)
    allowed_sports: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AuthenticatedClient:
    client_id: int
    key_prefix: str
    plan: PlanLimits


def plan_from_row(row: ApiPlan) -> PlanLimits:
    return PlanLimits(
        plan_id=row.id,
        name=row.name,
        requests_per_minute=row.requests_per_minute,
        daily_request_limit=row.daily_request_limit,
        monthly_request_limit=row.monthly_request_limit,
        allowed_endpoints=list(row.allowed_endpoints or []),
        allowed_sports=list(row.allowed_sports or []),
    )


def is_endpoint_allowed(plan: PlanLimits, endpoint: str) -> bool:
    return "*" in plan.allowed_endpoints or endpoint in plan.allowed_endpoints


def is_sport_allowed(plan: PlanLimits, sport: Optional[str]) -> bool:
    """Unrestricted when no sport is given or the plan lists none."""
    if not sport:
        return True
    if not plan.allowed_sports:
        return True
    return sport.strip().upper() in {s.upper() for s in plan.allowed_sports}


# ============================================================================
# LAST-USED STAMP (fire-and-forget)
# ============================================================================

def _stamp_last_used(client_id: int, session_factory: Callable[[], Session]) -> None:
    try:
        db = session_factory()
    except Exception as exc:
        logger.warning("last_used_at update skipped for client %s: %s", client_id, exc)
        return
    try:
        db.query(ApiClient).filter(ApiClient.id == client_id).update(
            {ApiClient.last_used_at: utcnow()}, synchronize_session=False
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("last_used_at update failed for client %s: %s", client_id, exc)
    finally:
        db.close()


def touch_last_used(
    client_id: int,
    session_factory: Callable[[], Session] = SessionLocal,
    executor: ThreadPoolExecutor = _TOUCH_EXECUTOR,
) -> Optional[Future]:
    """Schedule the ``last_used_at`` stamp.  Never raises, never blocks."""
    try:
        return executor.submit(_stamp_last_used, client_id, session_factory)
    except Exception as exc:
        logger.warning("Could not schedule last_used_at update for client %s: %s", client_id, exc)
        return None


# ============================================================================
# AUTHENTICATION
# ============================================================================

def authenticate(
    db: Session,
    raw_key: Optional[str],
    endpoint: str,
    sport: Optional[str] = None,
    touch: Optional[Callable[[int], object]] = None,
) -> AuthenticatedClient:
    """
    Resolve a raw API key to an authenticated client for ``endpoint``.

    Raises:
        ApiAccessError: NO_API_KEY / INVALID_API_KEY (401), PLAN_NOT_FOUND /
            ENDPOINT_NOT_ALLOWED / SPORT_NOT_ALLOWED (403).
    """
    if not raw_key:
        raise ApiAccessError(401, "NO_API_KEY", "Missing API key.")

    client = (
        db.query(ApiClient)
        .filter(ApiClient.hashed_key == hash_api_key(raw_key), ApiClient.status == "active")
        .first()
    )
    if client is None:
        raise ApiAccessError(401, "INVALID_API_KEY", "Invalid or inactive API key.")

    plan_row = (
        db.query(ApiPlan)
        .filter(ApiPlan.id == client.plan_id, ApiPlan.status == "active")
        .first()
    )
    if plan_row is None:
        logger.warning("Client %s (%s) references missing/inactive plan %r", client.id, client.key_prefix, client.plan_id)
        raise ApiAccessError(403, "PLAN_NOT_FOUND", "API plan not found or inactive.")
    plan = plan_from_row(plan_row)

    if not is_endpoint_allowed(plan, endpoint):
        raise ApiAccessError(403, "ENDPOINT_NOT_ALLOWED", "Endpoint not allowed for this plan.")

    if not is_sport_allowed(plan, sport):
        raise ApiAccessError(403, "SPORT_NOT_ALLOWED", "Sport not allowed for this plan.")

    (touch or touch_last_used)(client.id)

    return AuthenticatedClient(client_id=client.id, key_prefix=client.key_prefix, plan=plan)


def resolve_sport(code: Optional[str]) -> Sport:
    """``?sport=`` value to :class:`Sport`; missing means the default sport."""
    if code is None or not code.strip():
        return DEFAULT_SPORT
    sport = parse_sport(code)
    if sport is None:
        raise ApiAccessError(400, "INVALID_SPORT", "Invalid sport parameter.")
    return sport


def require_api_access(endpoint: str, sport_scoped: bool = True):
    """
    FastAPI dependency: authenticate, then enforce quotas for ``endpoint``.

    Usage in routes:
        @app.get("/api/external/games")
        def games(client: AuthenticatedClient = Depends(require_api_access("/games"))):
            ...

    For ``sport_scoped`` endpoints the ``sport`` query parameter is validated
    first (400 INVALID_SPORT, nothing counted) and then checked against the
    plan.  Quota headers are attached to the outgoing response on success and
    to the error response on rejection.
    """

    def dependency(
        request: Request,
        response: Response,
        header_key: Optional[str] = Security(API_KEY_HEADER),
        db: Session = Depends(get_db),
    ) -> AuthenticatedClient:
        sport = resolve_sport(request.query_params.get("sport")) if sport_scoped else None

        raw_key = extract_api_key(
            header_key,
            request.headers.get("authorization"),
            request.query_params.get(API_KEY_QUERY_PARAM),
        )
        client = authenticate(db, raw_key, endpoint, sport.value if sport else None)

        decision = enforce_limits(db, client.client_id, client.plan, endpoint)
        if not decision.ok:
            raise ApiAccessError(decision.status_code, decision.code, decision.error, headers=decision.headers)

        response.headers.update(decision.headers)
        return client

    return dependency


# ============================================================================
# ADMIN
# ============================================================================

def verify_admin_key(admin_key: Optional[str] = Security(ADMIN_KEY_HEADER)) -> str:
    """
    Admin-only routes (client provisioning, plan seeding)

    Usage:
        @app.post("/api/admin/api-service/init")
        def admin_route(admin: str = Depends(verify_admin_key)):
            ...
    """
    expected = os.getenv("ADMIN_API_KEY")
    if not expected:
        raise ApiAccessError(403, "ADMIN_DISABLED", "Admin access is not configured.")
    if not admin_key or not secrets.compare_digest(admin_key, expected):
        raise ApiAccessError(401, "INVALID_ADMIN_KEY", "Admin key required.")
    return "admin"
