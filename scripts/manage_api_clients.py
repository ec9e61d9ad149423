"""
manage_api_clients.py - Provision external API clients from the shell.

Same operations as the /api/admin/api-service routes, for when no admin key
is configured on the server.

Usage
-----
  python scripts/manage_api_clients.py list
  python scripts/manage_api_clients.py create "Acme Picks" --plan pro --email dev@acme.example
  python scripts/manage_api_clients.py rotate 12
  python scripts/manage_api_clients.py suspend 12
  python scripts/manage_api_clients.py activate 12

The raw key is printed exactly once by ``create`` and ``rotate``.
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage external API clients.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List clients (newest first)")

    create = sub.add_parser("create", help="Create a client and issue a key")
    create.add_argument("name")
    create.add_argument("--plan", default="free", help="Plan id (default: free)")
    create.add_argument("--email", default=None)
    create.add_argument("--notes", default=None)

    for name, help_text in (
        ("rotate", "Issue a new key; the old one stops working"),
        ("suspend", "Suspend a client"),
        ("activate", "Reactivate a suspended client"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("client_id", type=int)

    args = parser.parse_args()

    from backend.models import ApiPlan, SessionLocal
    from backend.services import api_clients

    db = SessionLocal()
    try:
        if args.command == "list":
            for c in api_clients.list_clients(db):
                last = c.last_used_at.strftime("%Y-%m-%d %H:%M") if c.last_used_at else "never"
                print(f"{c.id:>5}  {c.key_prefix}…  {c.status:<9}  {c.plan_id:<8}  {c.name}  (last used {last})")

        elif args.command == "create":
            if db.query(ApiPlan).filter(ApiPlan.id == args.plan).first() is None:
                print(f"ERROR: unknown plan {args.plan!r} - run scripts/init_db.py to seed plans")
                sys.exit(1)
            issued = api_clients.create_client(db, args.name, args.plan, args.email, args.notes)
            print(f"Client {issued.client_id} created on plan {args.plan}.")
            print(f"API key (shown once): {issued.api_key}")

        elif args.command == "rotate":
            issued = api_clients.rotate_client_key(db, args.client_id)
            if issued is None:
                print(f"ERROR: client {args.client_id} not found")
                sys.exit(1)
            print(f"New API key for client {issued.client_id} (shown once): {issued.api_key}")

        else:
            status = "suspended" if args.command == "suspend" else "active"
            client = api_clients.set_client_status(db, args.client_id, status)
            if client is None:
                print(f"ERROR: client {args.client_id} not found")
                sys.exit(1)
            print(f"Client {client.id} ({client.key_prefix}…) is now {status}.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
