"""
Provisioning for the external API: plans and client keys.

Raw keys leave this module exactly once, in the return value of
:func:`create_client` / :func:`rotate_client_key`.  Only the hash and the
8-char prefix are persisted.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from backend.auth import generate_api_key, get_key_prefix, hash_api_key
from backend.core.sport_config import SPORT_IDS
from backend.models import ApiClient, ApiPlan, utcnow

logger = logging.getLogger(__name__)

CLIENT_LIST_LIMIT = 200

ALL_SPORTS = [sport.value for sport in SPORT_IDS]

DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "id": "free",
        "name": "Free",
        "status": "active",
        "requests_per_minute": 10,
        "daily_request_limit": 1000,
        "monthly_request_limit": 10_000,
        "allowed_endpoints": ["/games", "/teams"],
        "allowed_sports": ALL_SPORTS,
    },
    {
        "id": "pro",
        "name": "Pro",
        "status": "active",
        "requests_per_minute": 10,
        "daily_request_limit": 1000,
        "monthly_request_limit": 200_000,
        "allowed_endpoints": ["/games", "/teams"],
        "allowed_sports": ALL_SPORTS,
    },
]

# Applied when an upserted plan omits a field
PLAN_FIELD_DEFAULTS: Dict[str, Any] = {
    "status": "active",
    "requests_per_minute": 10,
    "daily_request_limit": 1000,
    "monthly_request_limit": 50_000,
    "allowed_endpoints": ["*"],
    "allowed_sports": [],
}


@dataclass
class IssuedKey:
    """A freshly generated key.  ``api_key`` is never retrievable again."""

    client_id: int
    api_key: str
    key_prefix: str


def upsert_plan(db: Session, plan_id: str, name: str, **fields) -> ApiPlan:
    """Create or update a plan by id.  Sport codes are stored uppercase."""
    values = {**PLAN_FIELD_DEFAULTS, **{k: v for k, v in fields.items() if v is not None}}
    if values["status"] != "inactive":
        values["status"] = "active"
    values["allowed_sports"] = [str(s).upper() for s in values["allowed_sports"] or []]
    values["allowed_endpoints"] = [str(e) for e in values["allowed_endpoints"]]

    plan = db.query(ApiPlan).filter(ApiPlan.id == plan_id).first()
    if plan is None:
        plan = ApiPlan(id=plan_id, name=name, created_at=utcnow())
        db.add(plan)
    plan.name = name
    for key, value in values.items():
        setattr(plan, key, value)
    plan.updated_at = utcnow()
    db.commit()
    db.refresh(plan)
    return plan


def seed_default_plans(db: Session) -> List[str]:
    """Upsert :data:`DEFAULT_PLANS`.  Safe to run repeatedly."""
    seeded = []
    for spec in DEFAULT_PLANS:
        fields = {k: v for k, v in spec.items() if k not in ("id", "name")}
        upsert_plan(db, spec["id"], spec["name"], **fields)
        seeded.append(spec["id"])
    logger.info("Seeded API plans: %s", ", ".join(seeded))
    return seeded


def list_plans(db: Session) -> List[ApiPlan]:
    return db.query(ApiPlan).order_by(ApiPlan.created_at.desc()).all()


def create_client(
    db: Session,
    name: str,
    plan_id: str,
    contact_email: Optional[str] = None,
    notes: Optional[str] = None,
) -> IssuedKey:
    raw_key = generate_api_key()
    client = ApiClient(
        name=name,
        contact_email=contact_email,
        plan_id=plan_id,
        status="active",
        hashed_key=hash_api_key(raw_key),
        key_prefix=get_key_prefix(raw_key),
        created_at=utcnow(),
        notes=notes,
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    logger.info("Created API client %s (%s) on plan %s", client.id, client.key_prefix, plan_id)
    return IssuedKey(client_id=client.id, api_key=raw_key, key_prefix=client.key_prefix)


def rotate_client_key(db: Session, client_id: int) -> Optional[IssuedKey]:
    """Replace a client's key.  The old key stops working immediately."""
    client = db.query(ApiClient).filter(ApiClient.id == client_id).first()
    if client is None:
        return None
    raw_key = generate_api_key()
    client.hashed_key = hash_api_key(raw_key)
    client.key_prefix = get_key_prefix(raw_key)
    client.last_used_at = None
    db.commit()
    logger.info("Rotated key for API client %s (now %s)", client.id, client.key_prefix)
    return IssuedKey(client_id=client.id, api_key=raw_key, key_prefix=client.key_prefix)


def set_client_status(db: Session, client_id: int, status: str) -> Optional[ApiClient]:
    client = db.query(ApiClient).filter(ApiClient.id == client_id).first()
    if client is None:
        return None
    client.status = status
    db.commit()
    db.refresh(client)
    return client


def list_clients(db: Session, limit: int = CLIENT_LIST_LIMIT) -> Sequence[ApiClient]:
    """Newest first.  Callers serialize without ``hashed_key``."""
    return db.query(ApiClient).order_by(ApiClient.created_at.desc()).limit(limit).all()
