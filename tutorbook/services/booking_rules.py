"""Pure time and price rules for tutoring bookings."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from ..core.clock import ensure_utc
from ..core.constants import (
    LATE_CANCELLATION_WINDOW,
    MAX_ADVANCE_BOOKING,
    MIN_ADVANCE_BOOKING,
    RESCHEDULE_CUTOFF,
    VALID_DURATIONS,
)
from ..core.exceptions import InvalidDuration, InvalidTime, RescheduleWindowClosed

CENT = Decimal("0.01")


def calculate_price(duration_minutes: int, hourly_rate: Decimal | float | str) -> Decimal:
    """Price of a session, rounded half-up to whole cents.

    Float rates are taken at their exact binary value, so ``33.33`` for 90
    minutes is 49.9949... and prices at 49.99. Decimal and string rates are
    exact.
    """
    rate = Decimal(hourly_rate)
    raw = rate * Decimal(duration_minutes) / Decimal(60)
    return raw.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_duration(duration: int) -> None:
    if duration not in VALID_DURATIONS:
        allowed = ", ".join(str(value) for value in VALID_DURATIONS)
        raise InvalidDuration(f"Duration must be one of {allowed} minutes")


def validate_booking_time(scheduled_at: datetime, now: datetime) -> None:
    scheduled_at = ensure_utc(scheduled_at)
    now = ensure_utc(now)
    if scheduled_at <= now + MIN_ADVANCE_BOOKING:
        hours = int(MIN_ADVANCE_BOOKING.total_seconds() // 3600)
        raise InvalidTime(f"Booking must be at least {hours} hours in advance")
    if scheduled_at > now + MAX_ADVANCE_BOOKING:
        raise InvalidTime(
            f"Booking cannot be more than {MAX_ADVANCE_BOOKING.days} days in advance"
        )


def is_late_cancellation(scheduled_at: datetime, now: datetime) -> bool:
    return ensure_utc(scheduled_at) - ensure_utc(now) < LATE_CANCELLATION_WINDOW


def validate_reschedule_window(scheduled_at: datetime, now: datetime) -> None:
    if ensure_utc(scheduled_at) - ensure_utc(now) < RESCHEDULE_CUTOFF:
        hours = int(RESCHEDULE_CUTOFF.total_seconds() // 3600)
        raise RescheduleWindowClosed(
            f"Cannot reschedule a booking less than {hours} hours before start time"
        )
