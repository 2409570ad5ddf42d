import logging
from typing import List, Optional, Tuple

from fastapi import BackgroundTasks, HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from models import (
    AttendanceAction,
    AttendanceLog,
    Eligibility,
    Event,
    EventStatus,
    EventType,
    EventVariant,
    ParticipantType,
    Registration,
    RegistrationStatus,
    User,
)
from notifications import (
    send_merchandise_confirmation,
    send_paid_ticket_confirmation,
    send_ticket_confirmation,
)
from tickets import generate_ticket_id, issue_ticket_qr
from time_utils import has_passed, now_tz

logger = logging.getLogger(__name__)

OPEN_STATUSES = (EventStatus.PUBLISHED, EventStatus.ONGOING)
PUBLIC_STATUSES = (EventStatus.PUBLISHED, EventStatus.ONGOING, EventStatus.COMPLETED)
TICKETED_STATUSES = (RegistrationStatus.CONFIRMED, RegistrationStatus.APPROVED)
CHOICE_FIELD_TYPES = {"dropdown", "radio"}


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def get_event_or_404(db: Session, event_id: int) -> Event:
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise _not_found("Event not found")
    return event


def get_owned_event_or_404(db: Session, event_id: int, organizer: User) -> Event:
    event = db.query(Event).filter(Event.id == event_id, Event.organizer_id == organizer.id).first()
    if not event:
        raise _not_found("Event not found")
    return event


def _get_registration_or_404(db: Session, event: Event, registration_id: int) -> Registration:
    registration = (
        db.query(Registration)
        .filter(Registration.id == registration_id, Registration.event_id == event.id)
        .first()
    )
    if not registration:
        raise _not_found("Registration not found")
    return registration


def _ensure_open(event: Event, *, purchase: bool) -> None:
    noun = "purchase" if purchase else "registration"
    if event.status not in OPEN_STATUSES:
        raise _bad_request(f"Event is not open for {noun}")
    if has_passed(event.registration_deadline):
        raise _bad_request(f"{noun.capitalize()} deadline has passed")


def _check_eligibility(event: Event, participant: User) -> None:
    if event.eligibility == Eligibility.IIIT_ONLY and participant.participant_type != ParticipantType.IIIT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This event is for IIIT participants only")
    if event.eligibility == Eligibility.NON_IIIT_ONLY and participant.participant_type != ParticipantType.NON_IIIT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This event is for Non-IIIT participants only")


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _is_scalar(value) -> bool:
    return isinstance(value, (str, int, float, bool))


def _check_answer_shape(field: dict, value) -> None:
    if field.get("type") == "checkbox":
        chosen = value if isinstance(value, list) else [value]
        ok = all(_is_scalar(choice) for choice in chosen)
    else:
        ok = _is_scalar(value)
    if not ok:
        raise _bad_request(f"Invalid response for field: {field['label']}")


def validate_form_responses(form_fields: Optional[list], responses: list) -> List[dict]:
    """Match submitted answers to the event's form and return them ready to store.

    Answers must be plain values; a checkbox field may also take a list of them.
    """
    fields = {str(field["id"]): field for field in (form_fields or [])}
    answers = {}
    for item in responses or []:
        raw = item.model_dump() if hasattr(item, "model_dump") else dict(item)
        field_id = str(raw.get("field_id") or "")
        if field_id not in fields:
            raise _bad_request(f"Unknown form field: {field_id}")
        answers[field_id] = raw.get("response")

    stored = []
    for field_id, field in fields.items():
        value = answers.get(field_id)
        if _is_blank(value):
            if field.get("required"):
                raise _bad_request(f"Missing response for required field: {field['label']}")
            continue
        _check_answer_shape(field, value)
        options = field.get("options") or []
        if field.get("type") in CHOICE_FIELD_TYPES and options and value not in options:
            raise _bad_request(f"Invalid option for field: {field['label']}")
        if field.get("type") == "checkbox" and options:
            chosen = value if isinstance(value, list) else [value]
            if any(choice not in options for choice in chosen):
                raise _bad_request(f"Invalid option for field: {field['label']}")
        stored.append({"field_id": field_id, "label": field["label"], "response": value})
    return stored


def register_for_event(
    db: Session,
    event_id: int,
    participant: User,
    form_responses: list,
    background_tasks: BackgroundTasks,
) -> Registration:
    event = get_event_or_404(db, event_id)
    if event.event_type != EventType.NORMAL:
        raise _bad_request("Use /purchase for Merchandise events")
    _ensure_open(event, purchase=False)
    _check_eligibility(event, participant)

    existing = (
        db.query(Registration)
        .filter(Registration.event_id == event.id, Registration.participant_id == participant.id)
        .first()
    )
    current_count = int(event.registration_count or 0)
    if existing:
        if existing.status != RegistrationStatus.REJECTED:
            raise _bad_request("Already registered for this event")
        # the rejected attempt still holds a counted seat; free it before the capacity check
        db.delete(existing)
        db.query(Event).filter(Event.id == event.id).update(
            {Event.registration_count: Event.registration_count - 1},
            synchronize_session=False,
        )
        db.flush()
        current_count -= 1

    if event.registration_limit and current_count >= event.registration_limit:
        raise _bad_request("Registration limit reached")

    stored_responses = validate_form_responses(event.form_fields, form_responses)
    fee = float(event.registration_fee or 0)
    is_paid = fee > 0

    registration = Registration(
        event_id=event.id,
        participant_id=participant.id,
        form_responses=stored_responses,
        status=RegistrationStatus.PENDING if is_paid else RegistrationStatus.CONFIRMED,
        amount_paid=0 if is_paid else fee,
        quantity=1,
    )
    if not is_paid:
        issue_ticket_qr(registration, event)
    db.add(registration)

    counters = db.query(Event).filter(Event.id == event.id)
    if event.registration_limit is not None:
        counters = counters.filter(
            or_(Event.registration_limit.is_(None), Event.registration_count < Event.registration_limit)
        )
    claimed = counters.update(
        {
            Event.registration_count: Event.registration_count + 1,
            Event.recent_registrations: Event.recent_registrations + 1,
            Event.revenue: Event.revenue + (0 if is_paid else fee),
            Event.form_locked: True,
        },
        synchronize_session=False,
    )
    if not claimed:
        db.rollback()
        raise _bad_request("Registration limit reached")

    db.commit()
    db.refresh(registration)
    db.refresh(event)
    logger.info("Participant %s registered for event %s (%s)", participant.id, event.id, registration.status.value)

    if not is_paid:
        background_tasks.add_task(
            send_ticket_confirmation,
            participant.email,
            participant.first_name or "there",
            event.name,
            registration.ticket_id,
            registration.qr_code_url,
            event.start_date,
        )
    return registration


def purchase_merchandise(
    db: Session,
    event_id: int,
    participant: User,
    variant_id: int,
    quantity: int,
) -> Registration:
    event = get_event_or_404(db, event_id)
    if event.event_type != EventType.MERCHANDISE:
        raise _bad_request("Use /register for Normal events")
    _ensure_open(event, purchase=True)

    variant = (
        db.query(EventVariant)
        .filter(EventVariant.id == variant_id, EventVariant.event_id == event.id)
        .first()
    )
    if not variant:
        raise _bad_request("Invalid variant selected")
    if variant.stock < quantity:
        raise _bad_request("Insufficient stock")
    limit = int(event.purchase_limit_per_participant or 1)
    if quantity > limit:
        raise _bad_request(f"Max {limit} per participant")

    already_bought = (
        db.query(func.coalesce(func.sum(Registration.quantity), 0))
        .filter(
            Registration.event_id == event.id,
            Registration.participant_id == participant.id,
            Registration.status.notin_([RegistrationStatus.REJECTED, RegistrationStatus.CANCELLED]),
        )
        .scalar()
    )
    if int(already_bought or 0) + quantity > limit:
        raise _bad_request("Purchase limit reached for this event")

    registration = Registration(
        event_id=event.id,
        participant_id=participant.id,
        variant_id=variant.id,
        quantity=quantity,
        status=RegistrationStatus.PENDING,
        ticket_id=generate_ticket_id(),
        amount_paid=float(variant.price) * quantity,
    )
    db.add(registration)

    reserved = (
        db.query(EventVariant)
        .filter(EventVariant.id == variant.id, EventVariant.stock >= quantity)
        .update({EventVariant.stock: EventVariant.stock - quantity}, synchronize_session=False)
    )
    if not reserved:
        db.rollback()
        raise _bad_request("Insufficient stock")

    db.commit()
    db.refresh(registration)
    logger.info("Participant %s ordered %s x variant %s for event %s", participant.id, quantity, variant.id, event.id)
    return registration


def attach_payment_proof(
    db: Session,
    event_id: int,
    registration_id: int,
    participant: User,
    payment_proof_url: str,
) -> Registration:
    registration = get_participant_registration_or_404(db, event_id, registration_id, participant)
    if registration.status != RegistrationStatus.PENDING:
        raise _bad_request("Payment proof can only be attached while the registration is Pending")
    registration.payment_proof_url = payment_proof_url
    db.commit()
    db.refresh(registration)
    return registration


def get_participant_registration_or_404(
    db: Session,
    event_id: int,
    registration_id: int,
    participant: User,
) -> Registration:
    registration = (
        db.query(Registration)
        .filter(
            Registration.id == registration_id,
            Registration.event_id == event_id,
            Registration.participant_id == participant.id,
        )
        .first()
    )
    if not registration:
        raise _not_found("Registration not found")
    return registration


def list_registrations(db: Session, event: Event) -> List[Registration]:
    return (
        db.query(Registration)
        .filter(Registration.event_id == event.id)
        .order_by(Registration.created_at.desc(), Registration.id.desc())
        .all()
    )


def _claim_pending(db: Session, registration: Registration, target: RegistrationStatus) -> None:
    claimed = (
        db.query(Registration)
        .filter(Registration.id == registration.id, Registration.status == RegistrationStatus.PENDING)
        .update({Registration.status: target}, synchronize_session=False)
    )
    if not claimed:
        db.rollback()
        raise _bad_request("Registration is not in Pending state")
    registration.status = target


def resolve_payment(
    db: Session,
    event: Event,
    registration_id: int,
    action: str,
    note: Optional[str],
    background_tasks: BackgroundTasks,
) -> Registration:
    registration = _get_registration_or_404(db, event, registration_id)
    if registration.status != RegistrationStatus.PENDING:
        raise _bad_request("Registration is not in Pending state")
    is_merch = event.event_type == EventType.MERCHANDISE

    if action == "approve":
        _claim_pending(db, registration, RegistrationStatus.APPROVED)
        issue_ticket_qr(registration, event)
        registration.payment_note = note
        registration.amount_paid = float(registration.amount_paid or event.registration_fee or 0)
        increments = {Event.revenue: Event.revenue + registration.amount_paid}
        if is_merch:
            # merchandise is only counted once the organizer accepts the payment
            increments[Event.registration_count] = Event.registration_count + 1
        db.query(Event).filter(Event.id == event.id).update(increments, synchronize_session=False)
    else:
        _claim_pending(db, registration, RegistrationStatus.REJECTED)
        if is_merch and registration.variant_id:
            db.query(EventVariant).filter(EventVariant.id == registration.variant_id).update(
                {EventVariant.stock: EventVariant.stock + registration.quantity},
                synchronize_session=False,
            )
        registration.payment_note = note

    db.commit()
    db.refresh(registration)
    db.refresh(event)
    logger.info("Payment for registration %s on event %s resolved: %s", registration.id, event.id, action)

    if action == "approve":
        participant = registration.participant
        if is_merch:
            background_tasks.add_task(
                send_merchandise_confirmation,
                participant.email,
                participant.first_name or "there",
                event.name,
                registration.ticket_id,
                registration.variant.name if registration.variant else None,
                registration.quantity,
                registration.amount_paid,
                registration.payment_note,
                registration.qr_code_url,
            )
        else:
            background_tasks.add_task(
                send_paid_ticket_confirmation,
                participant.email,
                participant.first_name or "there",
                event.name,
                registration.ticket_id,
                registration.qr_code_url,
                event.start_date,
                registration.amount_paid,
            )
    return registration


def mark_attendance(db: Session, event: Event, registration_id: int, note: Optional[str]) -> Registration:
    registration = _get_registration_or_404(db, event, registration_id)
    if registration.attended:
        raise _bad_request("Already marked as attended")
    if registration.status not in TICKETED_STATUSES:
        raise _bad_request("Ticket is not confirmed")
    registration.attended = True
    registration.attended_at = now_tz()
    registration.attendance_note = (note or "").strip() or None
    db.commit()
    db.refresh(registration)
    return registration


def scan_ticket(db: Session, event: Event, ticket_id: str) -> Tuple[Registration, bool]:
    """Check a ticket in; the flag is True when it had already been scanned."""
    registration = (
        db.query(Registration)
        .filter(Registration.ticket_id == ticket_id.strip(), Registration.event_id == event.id)
        .first()
    )
    if not registration:
        raise _not_found("Ticket not found for this event")
    if registration.attended:
        return registration, True
    if registration.status not in TICKETED_STATUSES:
        raise _bad_request("Ticket is not confirmed")

    scanned = (
        db.query(Registration)
        .filter(Registration.id == registration.id, Registration.attended.is_(False))
        .update(
            {Registration.attended: True, Registration.attended_at: now_tz()},
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(registration)
    return registration, not scanned


def manual_attendance(
    db: Session,
    event: Event,
    registration_id: int,
    actor: User,
    action: str,
    note: Optional[str],
) -> Registration:
    registration = _get_registration_or_404(db, event, registration_id)
    reason = (note or "").strip()
    if not reason:
        raise _bad_request("A reason note is required for manual override")

    marking = action == AttendanceAction.MARK.value
    timestamp = now_tz()
    registration.attended = marking
    registration.attended_at = timestamp if marking else None
    db.add(
        AttendanceLog(
            registration_id=registration.id,
            action=AttendanceAction(action),
            note=reason,
            actor_id=actor.id,
            timestamp=timestamp,
        )
    )
    db.commit()
    db.refresh(registration)
    logger.info("Organizer %s %sed attendance for registration %s: %s", actor.id, action, registration.id, reason)
    return registration
