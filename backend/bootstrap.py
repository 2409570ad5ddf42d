from __future__ import annotations

import logging
import os
import secrets

from auth import get_password_hash
from database import Base, engine, get_db
from models import User, UserRole

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@felicity.example.com"


def ensure_tables() -> None:
    Base.metadata.create_all(bind=engine)


def ensure_default_admin() -> bool:
    """Create the admin account once; returns True only when a new one was made."""
    db = next(get_db())
    try:
        admin = db.query(User).filter(User.role == UserRole.ADMIN).first()
        if admin:
            return False

        email = (os.environ.get("ADMIN_EMAIL") or DEFAULT_ADMIN_EMAIL).strip().lower()
        password = os.environ.get("ADMIN_PASSWORD")
        generated = not password
        if generated:
            password = secrets.token_urlsafe(12)

        db.add(
            User(
                email=email,
                hashed_password=get_password_hash(password),
                role=UserRole.ADMIN,
                admin_name="Admin",
            )
        )
        db.commit()
        if generated:
            logger.info("Default admin created: email=%s, password=%s", email, password)
        else:
            logger.info("Default admin created: email=%s", email)
        return True
    finally:
        db.close()


def run_bootstrap(seed_admin: bool = True) -> None:
    ensure_tables()
    if seed_admin:
        ensure_default_admin()
