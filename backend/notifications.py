"""Best-effort side effects run after the response: emails and publish webhooks.

Every public function here swallows and logs its own failure; callers schedule
them with ``BackgroundTasks.add_task`` and never see the outcome. Arguments are
plain values because the request's session is closed by the time they run.
"""
import logging
from datetime import datetime
from typing import Optional

import requests

from email_templates import (
    QR_CONTENT_ID,
    build_merchandise_order_email,
    build_paid_ticket_email,
    build_ticket_confirmation_email,
)
from emailer import image_from_data_url, send_email

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10
WEBHOOK_EMBED_COLOR = 0x5865F2


def _deliver(to_email: Optional[str], kind: str, message, qr_code_url: Optional[str] = None) -> bool:
    if not to_email:
        return False
    subject, html, text = message
    qr_image = image_from_data_url(QR_CONTENT_ID, qr_code_url)
    try:
        send_email(to_email, subject, html, text, inline_images=[qr_image] if qr_image else None)
    except Exception as exc:
        logger.warning("Could not send %s email to %s: %s", kind, to_email, exc)
        return False
    logger.info("Sent %s email to %s", kind, to_email)
    return True


def send_ticket_confirmation(
    to_email: Optional[str],
    first_name: str,
    event_name: str,
    ticket_id: str,
    qr_code_url: Optional[str],
    start_date: Optional[datetime],
) -> bool:
    return _deliver(
        to_email,
        "ticket confirmation",
        build_ticket_confirmation_email(first_name, event_name, ticket_id, qr_code_url, start_date),
        qr_code_url,
    )


def send_paid_ticket_confirmation(
    to_email: Optional[str],
    first_name: str,
    event_name: str,
    ticket_id: str,
    qr_code_url: Optional[str],
    start_date: Optional[datetime],
    amount_paid: float,
) -> bool:
    return _deliver(
        to_email,
        "paid ticket",
        build_paid_ticket_email(first_name, event_name, ticket_id, qr_code_url, start_date, amount_paid),
        qr_code_url,
    )


def send_merchandise_confirmation(
    to_email: Optional[str],
    first_name: str,
    event_name: str,
    ticket_id: str,
    variant_name: Optional[str],
    quantity: int,
    amount_paid: float,
    organizer_note: Optional[str],
    qr_code_url: Optional[str],
) -> bool:
    return _deliver(
        to_email,
        "merchandise order",
        build_merchandise_order_email(
            first_name, event_name, ticket_id, variant_name, quantity, amount_paid, organizer_note, qr_code_url
        ),
        qr_code_url,
    )


def build_webhook_payload(
    name: str,
    description: str,
    event_type: str,
    start_date: Optional[datetime],
    registration_deadline: Optional[datetime],
) -> dict:
    def _day(value: Optional[datetime]) -> str:
        return value.strftime("%d %b %Y") if value else "TBA"

    return {
        "embeds": [
            {
                "title": f"New Event: {name}",
                "description": description,
                "fields": [
                    {"name": "Type", "value": event_type, "inline": True},
                    {"name": "Starts", "value": _day(start_date), "inline": True},
                    {"name": "Registration Deadline", "value": _day(registration_deadline), "inline": True},
                ],
                "color": WEBHOOK_EMBED_COLOR,
            }
        ]
    }


def post_event_webhook(webhook_url: Optional[str], payload: dict) -> bool:
    if not webhook_url:
        return False
    try:
        response = requests.post(webhook_url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
        response.raise_for_status()
    except Exception as exc:
        logger.warning("Publish webhook to %s failed: %s", webhook_url, exc)
        return False
    return True
