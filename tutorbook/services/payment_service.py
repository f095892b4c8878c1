import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.clock import ensure_utc, utc_now
from ..core.constants import CHECKOUT_SESSION_TTL
from ..core.exceptions import AccessDenied, PreconditionFailed
from ..db import models
from .booking_rules import to_cents
from .notification_service import notify_booking
from .payments import BasePaymentGateway, CheckoutSession

logger = logging.getLogger(__name__)

PAID_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    }
)
FAILED_EVENTS = frozenset({"checkout.session.async_payment_failed"})


def start_checkout(
    db: Session,
    gateway: BasePaymentGateway,
    booking: models.Booking,
    now: datetime | None = None,
) -> CheckoutSession:
    """Open a hosted checkout for ``booking`` and remember its session id.

    The session never outlives the lesson start; it is paid for by the
    student before the tutor confirms.
    """
    now = now or utc_now()
    settings = gateway.settings
    scheduled_at = ensure_utc(booking.scheduled_at)
    metadata = {
        "booking_id": str(booking.id),
        "student_id": str(booking.student_id),
        "tutor_id": str(booking.tutor_id),
        "scheduled_at": scheduled_at.isoformat(),
    }
    session = gateway.create_checkout_session(
        amount_cents=to_cents(booking.price),
        currency=settings.payment_currency,
        description=(
            f"{booking.duration}-minute tutoring session on "
            f"{scheduled_at:%d.%m.%Y %H:%M} UTC"
        ),
        metadata=metadata,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
        expires_at=min(now + CHECKOUT_SESSION_TTL, scheduled_at),
        idempotency_key=f"checkout-{booking.id}-{uuid.uuid4().hex}",
    )
    booking.checkout_session_id = session.id
    db.commit()
    logger.info(
        "Checkout session created",
        extra={"booking_id": booking.id, "session_id": session.id},
    )
    return session


def create_checkout_for_booking(
    db: Session,
    gateway: BasePaymentGateway,
    booking: models.Booking,
    actor: models.User,
    now: datetime | None = None,
) -> CheckoutSession:
    """Retry payment for an unpaid booking owned by ``actor``."""
    if booking.student_id != actor.id:
        raise AccessDenied("Only the student who booked can pay for this booking")
    if booking.payment_id:
        raise PreconditionFailed("This booking has already been paid")
    if booking.status not in (models.BookingStatus.pending, models.BookingStatus.confirmed):
        raise PreconditionFailed(
            f"Cannot pay for a booking with status {booking.status.value}"
        )
    now = now or utc_now()
    if ensure_utc(booking.scheduled_at) <= now:
        raise PreconditionFailed("Cannot pay for a booking that has already started")
    return start_checkout(db, gateway, booking, now)


def record_payment(db: Session, session: dict[str, Any], notifier=None) -> str:
    """Attach a paid checkout session to its booking.

    Returns a short outcome code. Status is never changed here; a paid booking
    still waits for the tutor to confirm it.
    """
    metadata = session.get("metadata") or {}
    session_id = session.get("id")
    booking_id = str(metadata.get("booking_id") or "")
    if not booking_id.isdigit() or not session_id:
        logger.error(
            "Checkout session without booking reference",
            extra={"session_id": session_id},
        )
        return "missing_booking"
    if session.get("payment_status") != "paid":
        logger.info(
            "Checkout session not paid yet",
            extra={"session_id": session_id, "payment_status": session.get("payment_status")},
        )
        return "not_paid"

    booking = db.execute(
        select(models.Booking)
        .where(models.Booking.id == int(booking_id))
        .with_for_update()
    ).scalar_one_or_none()
    if booking is None:
        logger.error(
            "Booking for checkout session not found",
            extra={"session_id": session_id, "booking_id": booking_id},
        )
        return "booking_not_found"
    if booking.payment_id == session_id:
        db.rollback()
        return "already_recorded"
    if booking.payment_id:
        db.rollback()
        logger.warning(
            "Booking already has a different payment attached",
            extra={
                "booking_id": booking.id,
                "payment_id": booking.payment_id,
                "session_id": session_id,
            },
        )
        return "payment_mismatch"
    if booking.status in (models.BookingStatus.completed, models.BookingStatus.refunded):
        db.rollback()
        logger.warning(
            "Payment received for a closed booking",
            extra={"booking_id": booking.id, "status": booking.status.value},
        )
        return "booking_closed"

    booking.payment_id = session_id
    db.commit()
    logger.info(
        "Payment recorded",
        extra={"booking_id": booking.id, "payment_id": session_id},
    )
    notify_booking(notifier, "payment_receipt", booking, include_tutor=False)
    return "recorded"


def handle_webhook_event(db: Session, event: dict[str, Any], notifier=None) -> str:
    event_type = event.get("type")
    session = event.get("session") or {}
    if event_type in PAID_EVENTS:
        return record_payment(db, session, notifier)
    if event_type in FAILED_EVENTS:
        logger.warning(
            "Asynchronous payment failed",
            extra={
                "session_id": session.get("id"),
                "booking_id": (session.get("metadata") or {}).get("booking_id"),
            },
        )
        return "payment_failed"
    logger.info("Ignoring webhook event", extra={"event_type": event_type})
    return "ignored"
