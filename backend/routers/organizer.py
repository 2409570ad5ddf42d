from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from database import get_db
from models import Event, EventStatus, OrganizerCategory, User, UserRole
from registration_service import PUBLIC_STATUSES
from schemas import (
    AccountEnvelope,
    DashboardAnalytics,
    DashboardEnvelope,
    EventResponse,
    EventSummaryResponse,
    OrganizerDetailEnvelope,
    OrganizerListEnvelope,
    OrganizerProfileUpdate,
    OrganizerPublic,
    build_account_response,
)
from security import require_organizer
from time_utils import ensure_timezone, now_tz

router = APIRouter()


def _listed_organizers(db: Session):
    # disabled organizers drop out of the public directory
    return db.query(User).filter(
        User.role == UserRole.ORGANIZER,
        or_(User.is_approved.is_(None), User.is_approved.is_(True)),
    )


@router.get("/organizer/dashboard", response_model=DashboardEnvelope)
def dashboard(
    organizer: User = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    events = (
        db.query(Event)
        .filter(Event.organizer_id == organizer.id)
        .order_by(Event.created_at.desc(), Event.id.desc())
        .all()
    )
    completed = [event for event in events if event.status == EventStatus.COMPLETED]
    analytics = DashboardAnalytics(
        total_revenue=sum(float(event.revenue or 0) for event in completed),
        total_registrations=sum(int(event.registration_count or 0) for event in completed),
        completed_events_count=len(completed),
    )
    return DashboardEnvelope(
        events=[EventResponse.model_validate(event) for event in events],
        analytics=analytics,
    )


@router.get("/organizer/profile", response_model=AccountEnvelope)
def get_organizer_profile(organizer: User = Depends(require_organizer)):
    return AccountEnvelope(user=build_account_response(organizer))


@router.patch("/organizer/profile", response_model=AccountEnvelope)
def update_organizer_profile(
    profile: OrganizerProfileUpdate,
    organizer: User = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    if profile.organizer_name is not None:
        organizer.organizer_name = profile.organizer_name.strip()
    if profile.category is not None:
        organizer.category = OrganizerCategory(profile.category.value)
    if profile.description is not None:
        organizer.description = profile.description
    if profile.contact_email is not None:
        organizer.contact_email = profile.contact_email
    if profile.contact_number is not None:
        organizer.contact_number = profile.contact_number
    if "discord_webhook" in profile.model_fields_set:
        organizer.discord_webhook = profile.discord_webhook

    db.commit()
    db.refresh(organizer)
    return AccountEnvelope(message="Profile updated", user=build_account_response(organizer))


@router.get("/organizer/public", response_model=OrganizerListEnvelope)
def list_organizers(db: Session = Depends(get_db)):
    rows = _listed_organizers(db).order_by(User.organizer_name.asc(), User.id.asc()).all()
    return OrganizerListEnvelope(
        count=len(rows),
        organizers=[OrganizerPublic.model_validate(row) for row in rows],
    )


@router.get("/organizer/{organizer_id}/public", response_model=OrganizerDetailEnvelope)
def organizer_detail(organizer_id: int, db: Session = Depends(get_db)):
    organizer = _listed_organizers(db).filter(User.id == organizer_id).first()
    if not organizer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organizer not found")

    events = (
        db.query(Event)
        .filter(Event.organizer_id == organizer.id, Event.status.in_(PUBLIC_STATUSES))
        .all()
    )
    now = now_tz()
    upcoming = sorted(
        (event for event in events if ensure_timezone(event.start_date) > now),
        key=lambda event: ensure_timezone(event.start_date),
    )
    past = sorted(
        (event for event in events if ensure_timezone(event.start_date) <= now),
        key=lambda event: ensure_timezone(event.start_date),
        reverse=True,
    )
    return OrganizerDetailEnvelope(
        organizer=OrganizerPublic.model_validate(organizer),
        upcoming_events=[EventSummaryResponse.model_validate(event) for event in upcoming],
        past_events=[EventSummaryResponse.model_validate(event) for event in past],
    )
