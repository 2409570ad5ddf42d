"""Event status transitions and the field-mutability rules that ride along with them.

``apply_event_update`` is the single entry point used by ``PATCH /events/{id}``.
It mutates the ORM object in place and raises ``HTTPException(400)`` for any
edit the current status does not allow; nothing is silently dropped.
"""
import secrets
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from models import Eligibility, Event, EventStatus, EventType, EventVariant, Registration
from time_utils import ensure_timezone, now_tz

ALLOWED_TRANSITIONS: Dict[EventStatus, frozenset] = {
    EventStatus.DRAFT: frozenset({EventStatus.PUBLISHED, EventStatus.CANCELLED}),
    EventStatus.PUBLISHED: frozenset(
        {EventStatus.PUBLISHED, EventStatus.ONGOING, EventStatus.COMPLETED, EventStatus.CANCELLED}
    ),
    EventStatus.ONGOING: frozenset({EventStatus.COMPLETED, EventStatus.CANCELLED, EventStatus.PUBLISHED}),
    EventStatus.COMPLETED: frozenset({EventStatus.ONGOING}),
    EventStatus.CANCELLED: frozenset({EventStatus.DRAFT, EventStatus.PUBLISHED}),
}

PUBLISHED_OPEN_FIELDS = ("description", "start_date", "end_date", "registration_deadline", "registration_limit")
PUBLISHED_LOCKED_FIELDS = ("registration_deadline", "registration_limit")
# order matches the error message shown to organizers
REGISTRATION_LOCKED_FIELDS = ("description", "start_date", "end_date", "name")
NON_NULL_FIELDS = {
    "name",
    "description",
    "registration_deadline",
    "start_date",
    "end_date",
    "eligibility",
    "registration_fee",
    "tags",
    "form_fields",
    "variants",
    "purchase_limit_per_participant",
}
DATE_FIELDS = {"registration_deadline", "start_date", "end_date"}


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    return value


def validate_event_dates(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date and end_date and ensure_timezone(start_date) > ensure_timezone(end_date):
        raise _bad_request("start_date cannot be after end_date")


def normalize_form_fields(fields: Iterable) -> List[dict]:
    normalized = []
    for index, field in enumerate(fields or []):
        raw = field.model_dump() if hasattr(field, "model_dump") else dict(field)
        normalized.append(
            {
                "id": str(raw.get("id") or f"f_{secrets.token_hex(4)}"),
                "label": str(raw.get("label") or "").strip(),
                "type": _plain(raw.get("type")),
                "options": list(raw.get("options") or []),
                "required": bool(raw.get("required")),
                "order": int(raw.get("order") if raw.get("order") is not None else index),
            }
        )
    return sorted(normalized, key=lambda item: item["order"])


def build_variants(variants: Iterable) -> List[EventVariant]:
    rows = []
    for variant in variants or []:
        raw = variant.model_dump() if hasattr(variant, "model_dump") else dict(variant)
        rows.append(
            EventVariant(
                name=str(raw["name"]).strip(),
                stock=int(raw["stock"]),
                price=float(raw["price"]),
            )
        )
    return rows


def _form_signature(fields) -> list:
    return [
        (item["label"], item["type"], tuple(item["options"]), item["required"], item["order"])
        for item in normalize_form_fields(fields)
    ]


def _variant_signature(variants) -> list:
    signature = []
    for variant in variants or []:
        if isinstance(variant, EventVariant):
            signature.append((variant.name, variant.stock, float(variant.price)))
        else:
            raw = variant.model_dump() if hasattr(variant, "model_dump") else dict(variant)
            signature.append((str(raw["name"]).strip(), int(raw["stock"]), float(raw["price"])))
    return signature


def _differs(event: Event, field: str, value) -> bool:
    current = getattr(event, field)
    if field in DATE_FIELDS:
        if value is None or current is None:
            return value is not current
        return ensure_timezone(value) != ensure_timezone(current)
    if field == "form_fields":
        return _form_signature(value) != _form_signature(current or [])
    if field == "variants":
        return _variant_signature(value) != _variant_signature(current)
    if field == "tags":
        return list(value or []) != list(current or [])
    if field == "registration_fee" and value is not None:
        return float(value) != float(current or 0)
    return _plain(value) != _plain(current)


def changed_fields(event: Event, updates: dict) -> List[str]:
    """Fields in ``updates`` (status excluded) whose value differs from the stored one."""
    return [field for field, value in updates.items() if field != "status" and _differs(event, field, value)]


def _ensure_status_only(changes: List[str], message: str) -> None:
    if changes:
        raise _bad_request(message)


def _apply_fields(db: Session, event: Event, updates: dict, fields: Iterable[str]) -> None:
    for field in fields:
        value = updates[field]
        if value is None and field in NON_NULL_FIELDS:
            raise _bad_request(f"{field} cannot be null")
        if field == "form_fields":
            if event.event_type != EventType.NORMAL:
                raise _bad_request("Registration forms apply to Normal events only")
            if event.form_locked:
                raise _bad_request("Registration form is locked after the first registration")
            event.form_fields = normalize_form_fields(value)
        elif field == "variants":
            if event.event_type != EventType.MERCHANDISE:
                raise _bad_request("Variants apply to Merchandise events only")
            has_orders = db.query(Registration.id).filter(Registration.event_id == event.id).first() is not None
            if has_orders:
                raise _bad_request("Variants cannot be replaced after purchases have been made")
            event.variants = build_variants(value)
        elif field == "eligibility":
            event.eligibility = Eligibility(_plain(value))
        elif field in DATE_FIELDS:
            setattr(event, field, ensure_timezone(value))
        else:
            setattr(event, field, value)


def _set_status(event: Event, target: EventStatus) -> None:
    event.status = target
    if target == EventStatus.ONGOING:
        # going live closes registration immediately
        event.registration_deadline = now_tz()


def apply_event_update(db: Session, event: Event, updates: dict) -> Event:
    target = EventStatus(_plain(updates["status"])) if updates.get("status") is not None else None
    if target == EventStatus.DRAFT and event.status == EventStatus.DRAFT:
        target = None
    changes = changed_fields(event, updates)
    current = event.status
    count = int(event.registration_count or 0)

    if target is not None and target not in ALLOWED_TRANSITIONS[current] and current != EventStatus.PUBLISHED:
        if current == EventStatus.DRAFT:
            raise _bad_request("Draft events can only be published or cancelled")
        if current == EventStatus.ONGOING:
            raise _bad_request("Only status changes allowed for Ongoing events")
        if current == EventStatus.COMPLETED:
            raise _bad_request("Completed events can only be reverted to Ongoing")
        raise _bad_request("Cancelled events can only be reverted to Draft or Published")

    if current == EventStatus.DRAFT:
        if count > 0:
            if target is None or changes:
                raise _bad_request(
                    "This draft is locked after receiving registrations. You can only publish or cancel it."
                )
        else:
            next_start = updates.get("start_date") or event.start_date
            next_end = updates.get("end_date") or event.end_date
            validate_event_dates(next_start, next_end)
            _apply_fields(db, event, updates, changes)
        if target is not None:
            _set_status(event, target)
        return event

    if current == EventStatus.PUBLISHED:
        if target is not None and target != EventStatus.PUBLISHED:
            if target not in ALLOWED_TRANSITIONS[current]:
                raise _bad_request("Published events can only move to Ongoing, Completed or Cancelled")
            _ensure_status_only(changes, "Status changes cannot be combined with field edits")
            _set_status(event, target)
            return event

        if count > 0:
            attempted = [field for field in REGISTRATION_LOCKED_FIELDS if field in changes]
            if attempted:
                raise _bad_request(f"Cannot change {', '.join(attempted)} after registrations have been received.")
            allowed = PUBLISHED_LOCKED_FIELDS
        else:
            allowed = PUBLISHED_OPEN_FIELDS
        rejected = [field for field in changes if field not in allowed]
        if rejected:
            raise _bad_request(f"Cannot edit {', '.join(rejected)} while the event is Published")
        next_start = updates.get("start_date") or event.start_date
        next_end = updates.get("end_date") or event.end_date
        validate_event_dates(next_start, next_end)
        _apply_fields(db, event, updates, changes)
        return event

    if current == EventStatus.ONGOING:
        if target is None:
            raise _bad_request("Only status changes allowed for Ongoing events")
        _ensure_status_only(changes, "Only status changes allowed for Ongoing events")
    elif current == EventStatus.COMPLETED:
        if target is None:
            raise _bad_request("Completed events can only be reverted to Ongoing")
        _ensure_status_only(changes, "Completed events can only be reverted to Ongoing")
    else:
        if target is None:
            raise _bad_request("Cancelled events can only be reverted to Draft or Published")
        _ensure_status_only(changes, "Cancelled events can only be reverted to Draft or Published")

    _set_status(event, target)
    return event
