#!/usr/bin/env python3
"""Zero the recent_registrations counter that drives the trending listing.

Meant to run on a schedule (e.g. daily cron) so trending reflects recent
sign-ups rather than all-time totals.
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.orm import Session

from database import SessionLocal
from models import Event


def reset_recent_registrations(db: Session, event_id: Optional[int] = None) -> int:
    query = db.query(Event)
    if event_id is not None:
        query = query.filter(Event.id == event_id)
    updated = query.update({Event.recent_registrations: 0}, synchronize_session=False)
    db.commit()
    return int(updated or 0)


def main() -> int:
    parser = argparse.ArgumentParser(description="Reset trending counters")
    parser.add_argument("--event-id", type=int, default=None, help="Only reset this event")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        updated = reset_recent_registrations(db, args.event_id)
    finally:
        db.close()

    print(f"Reset recent_registrations on {updated} event(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
