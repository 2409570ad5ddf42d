import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from auth import get_optional_user, is_role
from database import get_db
from event_state import apply_event_update, build_variants, normalize_form_fields, validate_event_dates
from models import Eligibility, Event, EventStatus, EventType, OrganizerFollow, User, UserRole
from notifications import build_webhook_payload, post_event_webhook
from registration_service import OPEN_STATUSES, PUBLIC_STATUSES, get_owned_event_or_404
from schemas import (
    EligibilityEnum,
    EventCreate,
    EventEnvelope,
    EventListEnvelope,
    EventResponse,
    EventSummaryResponse,
    EventTypeEnum,
    EventUpdate,
    OrganizerEventListEnvelope,
)
from security import require_active_organizer, require_organizer
from time_utils import ensure_timezone

logger = logging.getLogger(__name__)
router = APIRouter()

TRENDING_LIMIT = 5


def _interest_overlap(tags: Optional[List[str]], interests: List[str]) -> int:
    overlap = 0
    for tag in tags or []:
        tag_text = str(tag).lower()
        if any(tag_text in interest or interest in tag_text for interest in interests):
            overlap += 1
    return overlap


def _followed_organizer_ids(db: Session, participant: User) -> List[int]:
    rows = (
        db.query(OrganizerFollow.organizer_id)
        .filter(OrganizerFollow.participant_id == participant.id)
        .all()
    )
    return [row.organizer_id for row in rows]


@router.post("/events", status_code=status.HTTP_201_CREATED, response_model=EventEnvelope)
def create_event(
    payload: EventCreate,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    validate_event_dates(payload.start_date, payload.end_date)
    event_type = EventType(payload.event_type.value)

    event = Event(
        organizer_id=organizer.id,
        name=payload.name.strip(),
        description=payload.description,
        event_type=event_type,
        status=EventStatus.DRAFT,
        registration_deadline=ensure_timezone(payload.registration_deadline),
        start_date=ensure_timezone(payload.start_date),
        end_date=ensure_timezone(payload.end_date),
        eligibility=Eligibility(payload.eligibility.value),
        registration_limit=payload.registration_limit,
        registration_fee=payload.registration_fee,
        tags=payload.tags,
        form_fields=normalize_form_fields(payload.form_fields) if event_type == EventType.NORMAL else [],
        purchase_limit_per_participant=payload.purchase_limit_per_participant,
    )
    if event_type == EventType.MERCHANDISE:
        event.variants = build_variants(payload.variants)
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("Organizer %s created draft event %s", organizer.id, event.id)
    return EventEnvelope(message="Event created", event=EventResponse.model_validate(event))


@router.get("/events/organizer/my-events", response_model=OrganizerEventListEnvelope)
def my_events(
    organizer: User = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    events = (
        db.query(Event)
        .filter(Event.organizer_id == organizer.id)
        .order_by(Event.created_at.desc(), Event.id.desc())
        .all()
    )
    return OrganizerEventListEnvelope(
        count=len(events),
        events=[EventResponse.model_validate(event) for event in events],
    )


@router.get("/events/organizer/{event_id}", response_model=EventEnvelope)
def organizer_event_detail(
    event_id: int,
    organizer: User = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    return EventEnvelope(event=EventResponse.model_validate(event))


@router.patch("/events/{event_id}", response_model=EventEnvelope)
def update_event(
    event_id: int,
    payload: EventUpdate,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    previous_status = event.status
    apply_event_update(db, event, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(event)
    if event.status != previous_status:
        logger.info("Event %s moved %s -> %s", event.id, previous_status.value, event.status.value)
    return EventEnvelope(message="Event updated", event=EventResponse.model_validate(event))


@router.patch("/events/{event_id}/publish", response_model=EventEnvelope)
def publish_event(
    event_id: int,
    background_tasks: BackgroundTasks,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    if event.status != EventStatus.DRAFT:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only Draft events can be published")

    event.status = EventStatus.PUBLISHED
    db.commit()
    db.refresh(event)
    logger.info("Event %s published by organizer %s", event.id, organizer.id)

    if organizer.discord_webhook:
        background_tasks.add_task(
            post_event_webhook,
            organizer.discord_webhook,
            build_webhook_payload(
                event.name,
                event.description,
                event.event_type.value,
                event.start_date,
                event.registration_deadline,
            ),
        )
    return EventEnvelope(message="Event published", event=EventResponse.model_validate(event))


@router.get("/events", response_model=EventListEnvelope)
def browse_events(
    search: Optional[str] = None,
    event_type: Optional[EventTypeEnum] = None,
    eligibility: Optional[EligibilityEnum] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    followed_only: bool = False,
    trending: bool = False,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    query = db.query(Event).filter(Event.status.in_(OPEN_STATUSES))

    term = str(search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                Event.name.ilike(pattern),
                Event.description.ilike(pattern),
                cast(Event.tags, String).ilike(pattern),
            )
        )
    if event_type:
        query = query.filter(Event.event_type == EventType(event_type.value))
    if eligibility:
        query = query.filter(Event.eligibility.in_([Eligibility(eligibility.value), Eligibility.ALL]))
    if date_from:
        query = query.filter(Event.start_date >= ensure_timezone(date_from))
    if date_to:
        query = query.filter(Event.start_date <= ensure_timezone(date_to))

    participant = user if is_role(user, UserRole.PARTICIPANT) else None
    if followed_only and participant:
        followed = _followed_organizer_ids(db, participant)
        # following nobody leaves the listing unfiltered
        if followed:
            query = query.filter(Event.organizer_id.in_(followed))

    if trending:
        events = (
            query.order_by(Event.recent_registrations.desc(), Event.id.asc())
            .limit(TRENDING_LIMIT)
            .all()
        )
    else:
        events = query.order_by(Event.start_date.asc(), Event.id.asc()).all()
        interests = [str(item).lower() for item in (participant.areas_of_interest or [])] if participant else []
        if interests:
            events.sort(key=lambda event: -_interest_overlap(event.tags, interests))

    return EventListEnvelope(
        count=len(events),
        events=[EventSummaryResponse.model_validate(event) for event in events],
    )


@router.get("/events/{event_id}", response_model=EventEnvelope)
def event_detail(event_id: int, db: Session = Depends(get_db)):
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event or event.status not in PUBLIC_STATUSES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return EventEnvelope(event=EventResponse.model_validate(event))
