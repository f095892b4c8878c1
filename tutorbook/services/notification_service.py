from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

TEMPLATES: dict[str, tuple[str, str]] = {
    "booking_confirmed": (
        "Your session on {when} is confirmed",
        "Hi {name}, your {duration}-minute session with {counterpart} on {when} is confirmed. "
        "Price: ${price}.",
    ),
    "booking_cancelled": (
        "Session on {when} cancelled",
        "Hi {name}, the {duration}-minute session with {counterpart} on {when} was cancelled.",
    ),
    "booking_refunded": (
        "Your session on {when} was refunded",
        "Hi {name}, your tutor did not confirm the session on {when} in time. "
        "We refunded ${price} to your original payment method.",
    ),
    "payment_receipt": (
        "Payment received",
        "Hi {name}, we received your payment of ${price} for the session on {when}.",
    ),
    "session_reminder": (
        "Reminder: session on {when}",
        "Hi {name}, this is a reminder of your {duration}-minute session with {counterpart} on {when}.",
    ),
}


def format_when(moment: datetime) -> str:
    return moment.strftime("%d.%m.%Y %H:%M UTC")


def render(kind: str, template_data: dict[str, Any]) -> tuple[str, str]:
    subject, body = TEMPLATES[kind]
    values = {
        "name": "there",
        "counterpart": "your tutor",
        "duration": "",
        "price": "",
        "when": "",
        **{key: value for key, value in template_data.items() if value is not None},
    }
    return subject.format(**values), body.format(**values)


class NotificationService:
    """Fire-and-forget email sink. Delivery failures are logged, never raised."""

    def __init__(self, settings: Settings | None = None, client: httpx.Client | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    def send(self, kind: str, recipient: str | None, template_data: dict[str, Any]) -> bool:
        if not recipient:
            logger.warning("Notification has no recipient", extra={"kind": kind})
            return False
        if not self.settings.email_api_key:
            logger.warning(
                "Email API key is not configured; skipping notification",
                extra={"kind": kind},
            )
            return False
        try:
            subject, text = render(kind, template_data)
        except (KeyError, IndexError, ValueError):
            logger.exception("Failed to render notification", extra={"kind": kind})
            return False

        client = self._client or httpx.Client(timeout=10)
        try:
            response = client.post(
                self.settings.email_api_url,
                headers={"Authorization": f"Bearer {self.settings.email_api_key}"},
                json={
                    "from": self.settings.email_from,
                    "to": [recipient],
                    "subject": subject,
                    "text": text,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError:
            logger.exception(
                "Failed to send notification",
                extra={"kind": kind, "recipient": recipient},
            )
            return False
        finally:
            if self._client is None:
                client.close()
        return True


def _booking_template_data(booking, *, for_tutor: bool) -> dict[str, Any]:
    student = booking.student
    tutor_user = booking.tutor.user if booking.tutor else None
    me, other = (tutor_user, student) if for_tutor else (student, tutor_user)
    return {
        "name": getattr(me, "full_name", None),
        "counterpart": getattr(other, "full_name", None),
        "duration": booking.duration,
        "price": f"{booking.price:.2f}",
        "when": format_when(booking.scheduled_at),
        "booking_id": booking.id,
    }


def notify_booking(notifier, kind: str, booking, *, include_tutor: bool = True) -> None:
    """Best-effort notification of the booking's student and, optionally, tutor."""
    if notifier is None:
        return
    recipients = [(booking.student, False)]
    if include_tutor and booking.tutor is not None:
        recipients.append((booking.tutor.user, True))
    for user, for_tutor in recipients:
        try:
            notifier.send(
                kind,
                getattr(user, "email", None),
                _booking_template_data(booking, for_tutor=for_tutor),
            )
        except Exception:
            logger.exception(
                "Notification sink raised",
                extra={"kind": kind, "booking_id": booking.id},
            )
