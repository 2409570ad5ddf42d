#!/usr/bin/env python3
"""Create a demo organizer and participant for local runs.

Existing accounts with the same email are left untouched.
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from auth import get_password_hash
from bootstrap import ensure_tables
from database import SessionLocal
from models import OrganizerCategory, ParticipantType, User, UserRole

DEMO_ACCOUNTS = [
    {
        "email": "organizer@felicity.example.com",
        "role": UserRole.ORGANIZER,
        "organizer_name": "Demo Music Club",
        "category": OrganizerCategory.CLUB,
        "description": "Seeded organizer for local testing",
        "contact_email": "organizer@felicity.example.com",
    },
    {
        "email": "participant@felicity.example.com",
        "role": UserRole.PARTICIPANT,
        "first_name": "Demo",
        "last_name": "Participant",
        "participant_type": ParticipantType.IIIT,
        "college": "IIIT Hyderabad",
        "areas_of_interest": ["music", "coding"],
    },
]


def seed(password: str) -> int:
    ensure_tables()
    db = SessionLocal()
    created = 0
    try:
        for account in DEMO_ACCOUNTS:
            if db.query(User).filter(User.email == account["email"]).first():
                print(f"- exists: {account['email']}")
                continue
            db.add(User(hashed_password=get_password_hash(password), **account))
            created += 1
            print(f"- created: {account['email']} ({account['role'].value})")
        db.commit()
    finally:
        db.close()
    return created


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo organizer and participant accounts")
    parser.add_argument("--password", default="felicity-demo", help="Password for the created accounts")
    args = parser.parse_args()
    created = seed(args.password)
    print(f"Created {created} demo account(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
