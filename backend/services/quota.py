"""
Per-client fixed-window rate limiting and quotas.

Three independent windows are evaluated in order, stopping at the first
rejection:

    minute   key "YYYY-MM-DDTHH:MM"  →  429 RATE_LIMIT_MINUTE (Retry-After: 60)
    day      key "YYYY-MM-DD"        →  429 QUOTA_DAILY
    month    key "YYYY-MM"           →  429 QUOTA_MONTHLY

All keys are UTC.  The window is defined by the key alone; the ``expires_at``
stamped on minute rows only drives cleanup.

Atomicity
---------
Each window is one ``INSERT ... ON CONFLICT (id) DO UPDATE SET n = n + 1
RETURNING n`` statement, so concurrent requests from the same client on any
number of server instances never lose an update.  The increment happens
*before* the comparison: the request that tips a counter over its limit is
itself counted even though it is rejected.

Day and month windows also bump a per-endpoint diagnostic counter.  The
limiting decision only ever reads the window total.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from backend.models import ApiUsageDaily, ApiUsageEndpoint, ApiUsageMinute, ApiUsageMonthly, utcnow

logger = logging.getLogger(__name__)

MINUTE_WINDOW_RETENTION = timedelta(hours=2)
MINUTE_RETRY_AFTER_SECONDS = 60

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# ---------------------------------------------------------------------------
# Window keys
# ---------------------------------------------------------------------------

def minute_window_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%dT%H:%M")


def day_window_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def month_window_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

@dataclass
class QuotaDecision:
    """Outcome of :func:`enforce_limits`.  ``headers`` always apply."""

    ok: bool
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 200
    code: Optional[str] = None
    error: Optional[str] = None


def _minute_headers(plan: Any, used: int) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit-Minute": str(plan.requests_per_minute),
        "X-RateLimit-Used-Minute": str(used),
    }


def _day_headers(plan: Any, used: int) -> Dict[str, str]:
    return {
        "X-Quota-Limit-Day": str(plan.daily_request_limit),
        "X-Quota-Used-Day": str(used),
    }


def _month_headers(plan: Any, used: int) -> Dict[str, str]:
    return {
        "X-Quota-Limit-Month": str(plan.monthly_request_limit),
        "X-Quota-Used-Month": str(used),
    }


# ---------------------------------------------------------------------------
# Atomic counters
# ---------------------------------------------------------------------------

def _increment(
    db: Session,
    model,
    row_id: str,
    counter: str,
    insert_values: Dict[str, Any],
    update_values: Optional[Dict[str, Any]] = None,
) -> int:
    """Increment ``model.<counter>`` for ``row_id``, creating it at 1 if absent."""
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Atomic usage counters are not supported on dialect {dialect!r}")

    table = model.__table__
    stmt = insert(table).values(id=row_id, **{counter: 1}, **insert_values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.id],
        set_={counter: table.c[counter] + 1, **(update_values or {})},
    ).returning(table.c[counter])

    value = db.execute(stmt).scalar_one()
    db.commit()
    return int(value)


def _increment_endpoint(db: Session, client_id: int, period: str, window_key: str, endpoint: str, now: datetime) -> None:
    _increment(
        db,
        ApiUsageEndpoint,
        f"{client_id}:{window_key}:{endpoint}",
        "count",
        {"client_id": client_id, "period": period, "window_key": window_key, "endpoint": endpoint, "updated_at": now},
        {"updated_at": now},
    )


# ---------------------------------------------------------------------------
# Enforcement
# ---------------------------------------------------------------------------

def enforce_limits(
    db: Session,
    client_id: int,
    plan: Any,
    endpoint: str,
    now: Optional[datetime] = None,
) -> QuotaDecision:
    """
    Count this request against the minute, day and month windows.

    ``plan`` needs ``requests_per_minute``, ``daily_request_limit`` and
    ``monthly_request_limit``.  ``now`` is naive UTC (defaults to the wall
    clock) and is injectable for tests.

    Returns a rejected decision scoped to the first window over its limit,
    or an accepted one carrying cumulative headers for all three windows.
    """
    now = now or utcnow()

    # ---- Per-minute (fixed window) ----
    minute = minute_window_key(now)
    minute_count = _increment(
        db,
        ApiUsageMinute,
        f"{client_id}:{minute}",
        "count",
        {
            "client_id": client_id,
            "minute": minute,
            "created_at": now,
            "expires_at": now + MINUTE_WINDOW_RETENTION,
        },
    )
    if minute_count > plan.requests_per_minute:
        logger.info("Client %s over per-minute limit (%d/%d)", client_id, minute_count, plan.requests_per_minute)
        return QuotaDecision(
            ok=False,
            status_code=429,
            code="RATE_LIMIT_MINUTE",
            error="Rate limit exceeded (per-minute).",
            headers={"Retry-After": str(MINUTE_RETRY_AFTER_SECONDS), **_minute_headers(plan, minute_count)},
        )

    # ---- Daily quota ----
    day = day_window_key(now)
    day_total = _increment(
        db,
        ApiUsageDaily,
        f"{client_id}:{day}",
        "total",
        {"client_id": client_id, "day": day, "created_at": now, "updated_at": now},
        {"updated_at": now},
    )
    _increment_endpoint(db, client_id, "day", day, endpoint, now)
    if day_total > plan.daily_request_limit:
        logger.info("Client %s over daily quota (%d/%d)", client_id, day_total, plan.daily_request_limit)
        return QuotaDecision(
            ok=False,
            status_code=429,
            code="QUOTA_DAILY",
            error="Daily quota exceeded.",
            headers=_day_headers(plan, day_total),
        )

    # ---- Monthly quota ----
    month = month_window_key(now)
    month_total = _increment(
        db,
        ApiUsageMonthly,
        f"{client_id}:{month}",
        "total",
        {"client_id": client_id, "month": month, "created_at": now, "updated_at": now},
        {"updated_at": now},
    )
    _increment_endpoint(db, client_id, "month", month, endpoint, now)
    if month_total > plan.monthly_request_limit:
        logger.info("Client %s over monthly quota (%d/%d)", client_id, month_total, plan.monthly_request_limit)
        return QuotaDecision(
            ok=False,
            status_code=429,
            code="QUOTA_MONTHLY",
            error="Monthly quota exceeded.",
            headers=_month_headers(plan, month_total),
        )

    return QuotaDecision(
        ok=True,
        headers={
            **_minute_headers(plan, minute_count),
            **_day_headers(plan, day_total),
            **_month_headers(plan, month_total),
        },
    )


def purge_expired_minute_windows(db: Session, now: Optional[datetime] = None) -> int:
    """Delete minute rows past ``expires_at``.  Returns the number removed."""
    now = now or utcnow()
    deleted = (
        db.query(ApiUsageMinute)
        .filter(ApiUsageMinute.expires_at < now)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
