from datetime import datetime
from html import escape
from typing import Optional, Tuple

QR_CONTENT_ID = "ticket-qr"
SIGNATURE_TEXT = "Regards,\nFelicity Events Team\n"
SIGNATURE_HTML = "<p style=\"margin-bottom: 0;\">Regards,<br><strong>Felicity Events Team</strong></p>"


def _format_date(value: Optional[datetime]) -> str:
    if not value:
        return "To be announced"
    return value.strftime("%d %b %Y, %I:%M %p")


def _format_amount(value) -> str:
    amount = float(value or 0)
    if amount.is_integer():
        return f"₹{int(amount)}"
    return f"₹{amount:.2f}"


def _wrap_html(title: str, body: str) -> str:
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #1b1f24;">
        <div style="max-width: 560px; margin: 0 auto; padding: 24px; border: 1px solid #e6e6e6; border-radius: 12px;">
          <h2 style="margin-top: 0;">{escape(title)}</h2>
          {body}
          <hr style="border: none; border-top: 1px solid #e6e6e6; margin: 24px 0;" />
          {SIGNATURE_HTML}
        </div>
      </body>
    </html>
    """


def _ticket_block(ticket_id: str, qr_code_url: Optional[str]) -> str:
    # the QR travels as an inline attachment; mail clients strip data: URLs
    qr_html = (
        f'<p style="text-align: center;"><img src="cid:{QR_CONTENT_ID}" alt="Ticket QR" style="max-width: 220px;" /></p>'
        if qr_code_url
        else ""
    )
    return (
        f'<p style="text-align: center; font-size: 18px;">Ticket ID: <strong>{escape(ticket_id)}</strong></p>'
        f"{qr_html}"
        "<p>Show this QR code (or the ticket ID) at the venue for check-in.</p>"
    )


def build_ticket_confirmation_email(
    first_name: str,
    event_name: str,
    ticket_id: str,
    qr_code_url: Optional[str],
    start_date: Optional[datetime],
) -> Tuple[str, str, str]:
    subject = f"Registration Confirmed - {event_name}"
    text = (
        f"Hello {first_name},\n\n"
        f"Your registration for {event_name} is confirmed.\n"
        f"Ticket ID: {ticket_id}\n"
        f"Starts: {_format_date(start_date)}\n\n"
        "Show your ticket ID or QR code at the venue for check-in.\n\n"
        f"{SIGNATURE_TEXT}"
    )
    body = (
        f"<p>Hello {escape(first_name)},</p>"
        f"<p>Your registration for <strong>{escape(event_name)}</strong> is confirmed.</p>"
        f"<p>Starts: {_format_date(start_date)}</p>"
        f"{_ticket_block(ticket_id, qr_code_url)}"
    )
    return subject, _wrap_html("You're registered!", body), text


def build_paid_ticket_email(
    first_name: str,
    event_name: str,
    ticket_id: str,
    qr_code_url: Optional[str],
    start_date: Optional[datetime],
    amount_paid,
) -> Tuple[str, str, str]:
    subject = f"Your Ticket - {event_name}"
    text = (
        f"Hello {first_name},\n\n"
        f"Your payment of {_format_amount(amount_paid)} for {event_name} has been approved.\n"
        f"Ticket ID: {ticket_id}\n"
        f"Starts: {_format_date(start_date)}\n\n"
        "Show your ticket ID or QR code at the venue for check-in.\n\n"
        f"{SIGNATURE_TEXT}"
    )
    body = (
        f"<p>Hello {escape(first_name)},</p>"
        f"<p>Your payment of <strong>{_format_amount(amount_paid)}</strong> for "
        f"<strong>{escape(event_name)}</strong> has been approved.</p>"
        f"<p>Starts: {_format_date(start_date)}</p>"
        f"{_ticket_block(ticket_id, qr_code_url)}"
    )
    return subject, _wrap_html("Payment approved", body), text


def build_merchandise_order_email(
    first_name: str,
    event_name: str,
    ticket_id: str,
    variant_name: Optional[str],
    quantity: int,
    amount_paid,
    organizer_note: Optional[str],
    qr_code_url: Optional[str],
) -> Tuple[str, str, str]:
    subject = f"Order Confirmed - {event_name}"
    note_text = f"Note from the organizer: {organizer_note}\n" if organizer_note else ""
    note_html = f"<p><em>Note from the organizer:</em> {escape(organizer_note)}</p>" if organizer_note else ""
    item = variant_name or "Item"
    text = (
        f"Hello {first_name},\n\n"
        f"Your order for {event_name} has been confirmed.\n"
        f"Item: {item} x {quantity}\n"
        f"Amount paid: {_format_amount(amount_paid)}\n"
        f"Order ticket: {ticket_id}\n"
        f"{note_text}\n"
        "Bring the QR code or ticket ID when you collect your order.\n\n"
        f"{SIGNATURE_TEXT}"
    )
    body = (
        f"<p>Hello {escape(first_name)},</p>"
        f"<p>Your order for <strong>{escape(event_name)}</strong> has been confirmed.</p>"
        f"<p>Item: <strong>{escape(item)}</strong> &times; {quantity}<br>"
        f"Amount paid: <strong>{_format_amount(amount_paid)}</strong></p>"
        f"{note_html}"
        f"{_ticket_block(ticket_id, qr_code_url)}"
    )
    return subject, _wrap_html("Order confirmed", body), text
