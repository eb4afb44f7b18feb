"""
Seed a Vehicle Track database.

Creates permissions, the four built-in roles, the bootstrap admin account and
the Default Group that new vehicles land in. Safe to re-run: nothing that
already exists is overwritten (including the admin password).

Usage:
    python scripts/init_db.py                      # seed DATABASE_URL
    python scripts/init_db.py --create-all         # local sqlite: create tables first
    python scripts/init_db.py --admin-email ops@example.com
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fleet.db import create_db_engine, make_sessionmaker, transaction
from app.fleet.models import Base
from app.fleet.modules.vehicle_groups.service import get_or_create_default_group
from app.fleet.seed import ensure_admin

DEFAULT_DATABASE_URL = "sqlite:///fleet.db"
DEFAULT_ADMIN_EMAIL = "admin@vehicletrack.local"


def seed_only(
    *,
    database_url: str | None = None,
    admin_email: str | None = None,
    admin_password: str | None = None,
    create_all: bool = False,
) -> dict:
    """Seed roles, the admin account and the Default Group. Returns what was ensured."""
    db_url = (database_url or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL).strip()
    email = (admin_email or os.environ.get("ADMIN_EMAIL") or DEFAULT_ADMIN_EMAIL).strip().lower()
    password = admin_password or os.environ.get("ADMIN_PASSWORD") or "change-me"

    # No Flask app here; release runs this before the web process starts.
    engine = create_db_engine(db_url)
    if create_all:
        Base.metadata.create_all(bind=engine)
    with transaction(make_sessionmaker(engine)) as s:
        admin = ensure_admin(s, email=email, password=password)
        group = get_or_create_default_group(s, admin)
        result = {"admin_email": admin.email, "admin_id": admin.id, "default_group_id": group.id}
    engine.dispose()

    print(f"Seeded {db_url.split('@')[-1]}", flush=True)
    print(f"Admin email: {result['admin_email']} (password from ADMIN_PASSWORD)", flush=True)
    return result


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Seed roles, admin user and the Default Group.")
    parser.add_argument("--database-url", help="Defaults to $DATABASE_URL, then sqlite:///fleet.db")
    parser.add_argument("--admin-email", help="Defaults to $ADMIN_EMAIL")
    parser.add_argument("--create-all", action="store_true", help="Create tables from the models (local dev only)")
    args = parser.parse_args(argv)
    seed_only(database_url=args.database_url, admin_email=args.admin_email, create_all=args.create_all)


if __name__ == "__main__":
    main()
