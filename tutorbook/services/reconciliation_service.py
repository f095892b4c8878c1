"""Background sweeps over bookings the lifecycle left hanging.

``refund_expired_bookings`` returns money for paid bookings whose start time
passed before the tutor confirmed them. ``send_session_reminders`` nudges both
parties a day ahead of confirmed lessons.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from ..core.clock import utc_now
from ..core.constants import (
    EXPIRED_BOOKING_REFUND_REASON,
    EXPIRY_SWEEP_BATCH_SIZE,
    REMINDER_LEAD_TIME,
    REMINDER_WINDOW,
)
from ..core.exceptions import BookingError, NoPayment
from .booking_queries import expired_unconfirmed_bookings, upcoming_confirmed_bookings
from .notification_service import notify_booking
from .payments import BasePaymentGateway
from .refund_service import refund_booking

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    processed: int = 0
    succeeded: int = 0
    already_refunded: int = 0
    failed: int = 0
    skipped_no_payment: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def refund_expired_bookings(
    db: Session,
    gateway: BasePaymentGateway,
    notifier=None,
    *,
    now: datetime | None = None,
    limit: int = EXPIRY_SWEEP_BATCH_SIZE,
    sleep: Callable[[float], None] = time.sleep,
) -> SweepReport:
    """Refund one batch of expired, paid, never-confirmed bookings.

    Each booking is handled on its own; a failure is recorded in the report
    and the sweep moves on. Running the sweep again is safe.
    """
    now = now or utc_now()
    expired = expired_unconfirmed_bookings(db, now, limit)
    booking_ids = [booking.id for booking in expired]
    logger.info("Sweeping expired unconfirmed bookings", extra={"count": len(booking_ids)})

    report = SweepReport()
    for booking_id in booking_ids:
        report.processed += 1
        try:
            result = refund_booking(
                db, gateway, booking_id, EXPIRED_BOOKING_REFUND_REASON, sleep=sleep
            )
        except NoPayment:
            db.rollback()
            report.skipped_no_payment += 1
            continue
        except BookingError as exc:
            db.rollback()
            report.failed += 1
            report.errors.append({"booking_id": booking_id, "error": exc.message})
            logger.error(
                "Failed to refund expired booking",
                extra={"booking_id": booking_id, "error": exc.message},
            )
            continue
        except Exception as exc:
            db.rollback()
            report.failed += 1
            report.errors.append({"booking_id": booking_id, "error": str(exc)})
            logger.exception(
                "Unexpected error refunding expired booking",
                extra={"booking_id": booking_id},
            )
            continue

        if result.already_refunded:
            report.already_refunded += 1
            continue
        report.succeeded += 1
        booking = next(item for item in expired if item.id == booking_id)
        notify_booking(notifier, "booking_refunded", booking, include_tutor=False)

    logger.info("Expired bookings sweep finished", extra=report.as_dict())
    return report


def send_session_reminders(db: Session, notifier, *, now: datetime | None = None) -> int:
    now = now or utc_now()
    window_start = now + REMINDER_LEAD_TIME
    bookings = upcoming_confirmed_bookings(db, window_start, window_start + REMINDER_WINDOW)
    for booking in bookings:
        notify_booking(notifier, "session_reminder", booking)
    logger.info("Session reminders sent", extra={"count": len(bookings)})
    return len(bookings)
