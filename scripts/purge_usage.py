"""
purge_usage.py - Delete expired API usage windows.

Targets
-------
  api_usage_minute     Minute-window counters past ``expires_at``.  Always
                       included.  The server's scheduler does the same every
                       USAGE_PURGE_INTERVAL_MIN minutes; this is the manual
                       version for when the server is down.
  api_usage_endpoint   Per-endpoint diagnostic sub-counts for day windows
                       older than --keep-days (optional via --endpoints).

Daily and monthly totals are billing history and are never touched here.

Usage
-----
  python scripts/purge_usage.py                          # dry-run (counts only)
  python scripts/purge_usage.py --execute                # delete expired minute rows
  python scripts/purge_usage.py --execute --endpoints    # also old endpoint sub-counts
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure the project root (one level up from scripts/) is on sys.path so that
# `from backend.xxx import ...` resolves correctly when the script is run
# directly (e.g.  python scripts/purge_usage.py).
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Purge expired API usage windows."
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Actually delete rows.  Without this flag the script runs dry.",
    )
    parser.add_argument(
        "--endpoints",
        action="store_true",
        help="Also delete day-window endpoint sub-counts older than --keep-days.",
    )
    parser.add_argument(
        "--keep-days",
        type=int,
        default=90,
        help="Day-window endpoint sub-counts to keep (default 90).",
    )
    args = parser.parse_args()

    dry_run = not args.execute

    from backend.models import ApiUsageEndpoint, ApiUsageMinute, SessionLocal, utcnow
    from backend.services.quota import day_window_key, purge_expired_minute_windows

    now = utcnow()
    db = SessionLocal()
    try:
        label = "[DRY RUN] " if dry_run else ""

        # ----------------------------------------------------------------
        # 1. api_usage_minute - always purged
        # ----------------------------------------------------------------
        expired: int = db.query(ApiUsageMinute).filter(ApiUsageMinute.expires_at < now).count()
        print(
            f"{label}api_usage_minute: {expired} expired row(s)"
            + (" - would delete" if dry_run else "")
        )
        if not dry_run and expired:
            deleted = purge_expired_minute_windows(db, now)
            print(f"  Deleted {deleted} minute row(s).")

        # ----------------------------------------------------------------
        # 2. api_usage_endpoint - only when --endpoints is passed
        # ----------------------------------------------------------------
        cutoff = day_window_key(now - timedelta(days=args.keep_days))
        old_endpoint_rows = db.query(ApiUsageEndpoint).filter(
            ApiUsageEndpoint.period == "day",
            ApiUsageEndpoint.window_key < cutoff,
        )
        endpoint_count: int = old_endpoint_rows.count()
        if args.endpoints:
            print(
                f"{label}api_usage_endpoint: {endpoint_count} day row(s) before {cutoff}"
                + (" - would delete" if dry_run else "")
            )
            if not dry_run and endpoint_count:
                old_endpoint_rows.delete(synchronize_session=False)
                db.commit()
                print(f"  Deleted {endpoint_count} endpoint row(s).")
        else:
            print(
                f"  api_usage_endpoint: {endpoint_count} old day row(s) - skipped "
                "(pass --endpoints to include)"
            )

        if dry_run:
            db.rollback()
            print("\nDry run complete - no rows were deleted.")
            print("Re-run with --execute to apply changes.")
        else:
            print(
                f"\nUsage purge complete at {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC."
            )

    except Exception as exc:
        try:
            db.rollback()
        except Exception:
            pass  # Connection already broken; nothing to roll back
        root = exc.__cause__ or exc
        print(f"ERROR: {type(root).__name__}: {root}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
