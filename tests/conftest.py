from datetime import datetime, timedelta, timezone
from pathlib import Path
import os
import sys
import tempfile

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

_DB_DIR = tempfile.mkdtemp(prefix="felicity-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ["APP_TIMEZONE"] = "UTC"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "admin-password"
for _key in list(os.environ):
    if _key.startswith("SMTP_PRIMARY_") or _key.startswith("SMTP_SECONDARY_"):
        os.environ.pop(_key)

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, get_password_hash
from database import Base, SessionLocal, engine
from models import OrganizerCategory, ParticipantType, User, UserRole

PASSWORD = "password123"
_PASSWORD_HASH = {}


def _hashed_password() -> str:
    if PASSWORD not in _PASSWORD_HASH:
        _PASSWORD_HASH[PASSWORD] = get_password_hash(PASSWORD)
    return _PASSWORD_HASH[PASSWORD]


def iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat()


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from server import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.PARTICIPANT, **fields) -> User:
        counter["n"] += 1
        n = counter["n"]
        values = {
            "email": f"{role.value}{n}@example.com",
            "hashed_password": _hashed_password(),
            "role": role,
        }
        if role == UserRole.PARTICIPANT:
            values.update(
                first_name=f"Participant{n}",
                last_name="Tester",
                participant_type=ParticipantType.IIIT,
                college="IIIT Hyderabad",
            )
        elif role == UserRole.ORGANIZER:
            values.update(
                organizer_name=f"Club {n}",
                category=OrganizerCategory.CLUB,
                contact_email=f"club{n}@example.com",
                is_approved=True,
            )
        values.update(fields)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def organizer(make_user):
    return make_user(UserRole.ORGANIZER)


@pytest.fixture
def participant(make_user):
    return make_user(UserRole.PARTICIPANT)


def event_payload(**overrides) -> dict:
    payload = {
        "name": "Battle of Bands",
        "description": "Annual music showdown",
        "event_type": "Normal",
        "registration_deadline": iso(timedelta(days=5)),
        "start_date": iso(timedelta(days=7)),
        "end_date": iso(timedelta(days=8)),
        "eligibility": "All",
        "registration_fee": 0,
        "tags": ["music", "competition"],
    }
    payload.update(overrides)
    return payload


def merch_payload(**overrides) -> dict:
    payload = event_payload(
        name="Fest T-Shirt",
        description="Official merchandise",
        event_type="Merchandise",
        tags=["merch"],
        variants=[{"name": "M / Black", "stock": 2, "price": 350}],
        purchase_limit_per_participant=1,
    )
    payload.update(overrides)
    return payload


def create_event(client, organizer_user, publish: bool = True, **overrides) -> dict:
    response = client.post("/api/events", json=event_payload(**overrides), headers=auth_headers(organizer_user))
    assert response.status_code == 201, response.text
    event = response.json()["event"]
    if publish:
        published = client.patch(f"/api/events/{event['id']}/publish", headers=auth_headers(organizer_user))
        assert published.status_code == 200, published.text
        event = published.json()["event"]
    return event


def create_merch_event(client, organizer_user, publish: bool = True, **overrides) -> dict:
    response = client.post("/api/events", json=merch_payload(**overrides), headers=auth_headers(organizer_user))
    assert response.status_code == 201, response.text
    event = response.json()["event"]
    if publish:
        published = client.patch(f"/api/events/{event['id']}/publish", headers=auth_headers(organizer_user))
        assert published.status_code == 200, published.text
        event = published.json()["event"]
    return event


def organizer_event(client, organizer_user, event_id: int) -> dict:
    response = client.get(f"/api/events/organizer/{event_id}", headers=auth_headers(organizer_user))
    assert response.status_code == 200, response.text
    return response.json()["event"]
