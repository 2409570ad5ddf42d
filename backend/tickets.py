import base64
import json
import secrets
from io import BytesIO

import qrcode

TICKET_PREFIX = "TKT-"


def generate_ticket_id() -> str:
    # 5 random bytes -> 10 uppercase hex chars; the unique column on
    # registrations.ticket_id catches the unlikely collision.
    return f"{TICKET_PREFIX}{secrets.token_hex(5).upper()}"


def build_qr_payload(ticket_id: str, event_id: int, participant_id: int, event_name: str) -> dict:
    return {
        "ticket_id": ticket_id,
        "event_id": event_id,
        "participant_id": participant_id,
        "event_name": event_name,
    }


def render_qr_data_url(payload: dict) -> str:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(json.dumps(payload, separators=(",", ":")))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, "PNG")
    encoded = base64.b64encode(buffered.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{encoded}"


def issue_ticket_qr(registration, event) -> str:
    """Assign a ticket id if the registration has none and (re)render its QR."""
    if not registration.ticket_id:
        registration.ticket_id = generate_ticket_id()
    payload = build_qr_payload(registration.ticket_id, event.id, registration.participant_id, event.name)
    registration.qr_code_url = render_qr_data_url(payload)
    return registration.ticket_id
