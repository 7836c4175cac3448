"""Staff e-mail notifications for reservation events.

Security: NEVER log recipient addresses, reader names or notes. Only log
counts, ids and error types.

Config (environment):
- SMTP_HOST: SMTP server; when unset, build_notifier() returns a
  LoggingNotifier that only records the event.
- SMTP_PORT (default 587), SMTP_USE_TLS (default true)
- SMTP_USERNAME, SMTP_PASSWORD: optional login
- SMTP_SENDER_EMAIL, SMTP_SENDER_NAME (default "Biblioteca")
- NOTIFY_STAFF_EMAILS: comma-separated recipients
- RESERVATION_DETAILS_URL: optional link template, "{id}" is substituted
"""

from __future__ import annotations

import html
import os
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Callable, Sequence

from biblioteca.domain.models import Book, Reservation
from biblioteca.domain.ports import NotificationEvent
from biblioteca.observability.correlation import get_correlation_id
from biblioteca.observability.logging import get_logger
from biblioteca.observability.redaction import safe_log_context

logger = get_logger(__name__)

SMTP_TIMEOUT = 10


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int = 587
    use_tls: bool = True
    username: str = ""
    password: str = ""
    sender_email: str = ""
    sender_name: str = "Biblioteca"

    @property
    def from_address(self) -> str:
        return self.sender_email or self.username


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_smtp_settings() -> SmtpSettings | None:
    """Read SMTP settings from the environment (None if SMTP_HOST is unset)."""
    host = os.environ.get("SMTP_HOST", "").strip()
    if not host:
        return None

    return SmtpSettings(
        host=host,
        port=int(os.environ.get("SMTP_PORT", "587")),
        use_tls=_env_flag("SMTP_USE_TLS", True),
        username=os.environ.get("SMTP_USERNAME", ""),
        password=os.environ.get("SMTP_PASSWORD", ""),
        sender_email=os.environ.get("SMTP_SENDER_EMAIL", ""),
        sender_name=os.environ.get("SMTP_SENDER_NAME", "") or "Biblioteca",
    )


def staff_recipients_from_env() -> list[str]:
    """Distinct, non-blank addresses from NOTIFY_STAFF_EMAILS, in order."""
    raw = os.environ.get("NOTIFY_STAFF_EMAILS", "")
    recipients: list[str] = []
    for part in raw.split(","):
        address = part.strip()
        if address and address not in recipients:
            recipients.append(address)
    return recipients


def render_reservation_email(
    event: NotificationEvent,
    reservation: Reservation,
    book: Book | None,
    details_url: str | None = None,
) -> tuple[str, str]:
    """Build (subject, html_body) for a reservation event."""
    title = book.title if book is not None and book.title else f"Book #{reservation.book_id}"
    end = reservation.end_date.isoformat() if reservation.end_date else "open"

    items = [
        f"<li><strong>Book:</strong> {html.escape(title)}</li>",
        f"<li><strong>Reader:</strong> {html.escape(reservation.reader_id)}</li>",
        f"<li><strong>Period:</strong> {reservation.start_date.isoformat()} - {html.escape(end)}</li>",
        f"<li><strong>Current status:</strong> {reservation.status.value}</li>",
    ]
    if reservation.notes and reservation.notes.strip():
        items.append(f"<li><strong>Reader notes:</strong> {html.escape(reservation.notes)}</li>")
    if details_url:
        items.append(
            f'<li><a href="{html.escape(details_url, quote=True)}">View reservation details</a></li>'
        )

    body = f"<p>A reservation was {event}.</p><ul>{''.join(items)}</ul>"
    return f"Reservation {event}: {title}", body


class SmtpNotifier:
    """Sends one HTML e-mail per recipient.

    A failure for one recipient is logged and does not stop the others.

    Args:
        settings: SMTP connection settings.
        book_lookup: Resolves book titles for the subject line.
        details_url_template: e.g. "https://library.example/reservations/{id}".
    """

    def __init__(
        self,
        settings: SmtpSettings,
        *,
        book_lookup: Callable[[str], Book | None] | None = None,
        details_url_template: str | None = None,
    ) -> None:
        self._settings = settings
        self._book_lookup = book_lookup
        self._details_url_template = details_url_template

    def _connect(self) -> smtplib.SMTP:
        server = smtplib.SMTP(self._settings.host, self._settings.port, timeout=SMTP_TIMEOUT)
        server.ehlo()
        if self._settings.use_tls:
            server.starttls(context=ssl.create_default_context())
            server.ehlo()
        if self._settings.username:
            server.login(self._settings.username, self._settings.password)
        return server

    def _build_message(self, to_addr: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self._settings.sender_name, self._settings.from_address))
        msg["To"] = to_addr
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = make_msgid()
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(body, subtype="html")
        return msg

    def notify(
        self,
        event: NotificationEvent,
        reservation: Reservation,
        recipients: Sequence[str],
    ) -> None:
        if not recipients:
            return

        book = self._book_lookup(reservation.book_id) if self._book_lookup else None
        details_url = (
            self._details_url_template.format(id=reservation.id)
            if self._details_url_template
            else None
        )
        subject, body = render_reservation_email(event, reservation, book, details_url)

        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            event=event,
            reservation_id=reservation.id,
            recipient_count=len(recipients),
        )

        sent = 0
        with self._connect() as server:
            for to_addr in recipients:
                try:
                    server.send_message(self._build_message(to_addr, subject, body))
                    sent += 1
                except smtplib.SMTPException as exc:
                    logger.error(
                        "reservation email to recipient failed",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, error_type=type(exc).__name__
                            )
                        },
                    )

        logger.info(
            "reservation emails sent",
            extra={"extra_fields": safe_log_context(**log_ctx, sent=sent)},
        )


class LoggingNotifier:
    """Records reservation events in the log; used when SMTP is not configured."""

    def notify(
        self,
        event: NotificationEvent,
        reservation: Reservation,
        recipients: Sequence[str],
    ) -> None:
        logger.info(
            "reservation notification (smtp not configured)",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    event=event,
                    reservation_id=reservation.id,
                    recipient_count=len(recipients),
                )
            },
        )


def build_notifier(
    book_lookup: Callable[[str], Book | None] | None = None,
) -> SmtpNotifier | LoggingNotifier:
    """SmtpNotifier when SMTP_HOST is set, otherwise LoggingNotifier."""
    settings = load_smtp_settings()
    if settings is None:
        return LoggingNotifier()
    return SmtpNotifier(
        settings,
        book_lookup=book_lookup,
        details_url_template=os.environ.get("RESERVATION_DETAILS_URL") or None,
    )
