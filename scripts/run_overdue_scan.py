#!/usr/bin/env python3
# scripts/run_overdue_scan.py
import argparse
import json
import logging
import os


def main() -> None:
    ap = argparse.ArgumentParser(description="Penalise reservations whose pickup is overdue (safe to re-run).")
    ap.add_argument("--db", default=None, help="Path to SQLite DB (default: LENDING_DB_PATH or data/lending.db)")
    ap.add_argument("--days-overdue", type=int, default=1, help="Days past the start date before a pickup counts as overdue")
    ap.add_argument("--no-approved", action="store_true", help="Skip APPROVED reservations")
    ap.add_argument("--include-active", action="store_true", help="Also scan ACTIVE reservations")
    args = ap.parse_args()

    if args.db:
        os.environ["LENDING_DB_PATH"] = args.db

    # db.py reads LENDING_DB_PATH at import time
    import config
    import overdue
    from db import Base, SessionLocal, engine
    from models import Actor, OverdueScanIn, Role

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    body = OverdueScanIn(
        days_overdue=args.days_overdue,
        include_approved=not args.no_approved,
        include_active=args.include_active,
    )
    actor = Actor(user_id=config.SYSTEM_USER_ID, role=Role.SUPER_ADMIN)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        result = overdue.scan_overdue(db, actor, body)
    finally:
        db.close()

    print(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
