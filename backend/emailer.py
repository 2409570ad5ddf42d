import base64
import binascii
import os
import smtplib
import ssl
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

# tried in order; the secondary relay only sees mail the primary refused
SMTP_PROFILES = ("SMTP_PRIMARY", "SMTP_SECONDARY")
SMTP_TIMEOUT_SECONDS = 20


@dataclass
class SMTPConfig:
    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    use_tls: bool
    use_ssl: bool
    sender: str

    @classmethod
    def from_env(cls, prefix: str) -> Optional["SMTPConfig"]:
        host = os.environ.get(f"{prefix}_HOST")
        port_raw = os.environ.get(f"{prefix}_PORT")
        sender = os.environ.get(f"{prefix}_FROM")
        if not host or not port_raw or not sender:
            return None
        try:
            port = int(port_raw)
        except ValueError:
            raise RuntimeError(f"Invalid {prefix}_PORT: {port_raw}")
        return cls(
            host=host,
            port=port,
            user=os.environ.get(f"{prefix}_USER"),
            password=os.environ.get(f"{prefix}_PASS"),
            use_tls=_bool_env(os.environ.get(f"{prefix}_TLS"), default=True),
            use_ssl=_bool_env(os.environ.get(f"{prefix}_SSL"), default=False),
            sender=sender,
        )


@dataclass
class InlineImage:
    """An image the HTML body references as ``cid:<content_id>``."""

    content_id: str
    data: bytes
    subtype: str = "png"


def _bool_env(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def image_from_data_url(content_id: str, data_url: Optional[str]) -> Optional[InlineImage]:
    """Turn a ``data:image/...;base64,`` URL (ticket QR codes) into an inline attachment."""
    if not data_url or not data_url.startswith("data:image/") or ";base64," not in data_url:
        return None
    header, encoded = data_url.split(",", 1)
    subtype = header[len("data:image/"):].split(";", 1)[0] or "png"
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Skipping malformed inline image %s", content_id)
        return None
    return InlineImage(content_id=content_id, data=data, subtype=subtype)


def build_message(
    config: SMTPConfig,
    to_email: str,
    subject: str,
    html: str,
    text: str,
    inline_images: Iterable[InlineImage] = (),
) -> EmailMessage:
    message = EmailMessage()
    message["From"] = config.sender
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(text)
    message.add_alternative(html, subtype="html")

    images = list(inline_images)
    if images:
        html_part = message.get_payload()[-1]
        for image in images:
            html_part.add_related(
                image.data,
                maintype="image",
                subtype=image.subtype,
                cid=f"<{image.content_id}>",
                disposition="inline",
                filename=f"{image.content_id}.{image.subtype}",
            )
    return message


def _open_connection(config: SMTPConfig) -> smtplib.SMTP:
    if config.use_ssl:
        return smtplib.SMTP_SSL(
            config.host, config.port, context=ssl.create_default_context(), timeout=SMTP_TIMEOUT_SECONDS
        )
    server = smtplib.SMTP(config.host, config.port, timeout=SMTP_TIMEOUT_SECONDS)
    server.ehlo()
    if config.use_tls:
        server.starttls(context=ssl.create_default_context())
        server.ehlo()
    return server


def _transmit(config: SMTPConfig, message: EmailMessage) -> None:
    with _open_connection(config) as server:
        if config.user and config.password:
            server.login(config.user, config.password)
        server.send_message(message)


def _configured_relays() -> Tuple[Tuple[str, SMTPConfig], ...]:
    relays = []
    for prefix in SMTP_PROFILES:
        config = SMTPConfig.from_env(prefix)
        if config:
            relays.append((prefix, config))
    return tuple(relays)


def send_email(
    to_email: str,
    subject: str,
    html: str,
    text: str,
    inline_images: Optional[Iterable[InlineImage]] = None,
) -> None:
    relays = _configured_relays()
    if not relays or relays[0][0] != SMTP_PROFILES[0]:
        raise RuntimeError("SMTP_PRIMARY configuration missing")

    images = list(inline_images or ())
    last_error: Optional[Exception] = None
    for prefix, config in relays:
        try:
            _transmit(config, build_message(config, to_email, subject, html, text, images))
        except Exception as exc:
            logger.warning("%s failed for %s: %s", prefix, to_email, exc)
            last_error = exc
            continue
        if prefix != SMTP_PROFILES[0]:
            logger.info("Email to %s sent via %s", to_email, prefix)
        return

    if len(relays) == 1:
        raise RuntimeError("Primary SMTP failed and SMTP_SECONDARY configuration missing") from last_error
    raise RuntimeError("All SMTP relays failed") from last_error
