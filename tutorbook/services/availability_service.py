"""Availability containment, conflict detection and bookable-slot listing.

All clock arithmetic is done in UTC. Weekly availability windows are matched
by weekday, counting from Sunday (0) to Saturday (6).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Protocol, Sequence

from ..core.clock import ensure_utc
from ..core.constants import SLOT_GRID_STEP
from ..core.exceptions import NoAvailability, OutsideWindow
from ..db.models.booking import INACTIVE_STATUSES


class WeeklySlot(Protocol):
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool


class ScheduledBooking(Protocol):
    id: int
    tutor_id: int
    status: object
    scheduled_at: datetime
    duration: int


@dataclass(slots=True)
class TimeSlot:
    start: datetime
    end: datetime
    available: bool
    reason: str | None = None


def day_of_week(moment: datetime | date) -> int:
    if isinstance(moment, datetime):
        moment = ensure_utc(moment)
    return (moment.weekday() + 1) % 7


def parse_clock(value: str) -> int:
    """Minutes since midnight for an ``HH:MM`` string."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _slots_for_day(slots: Iterable[WeeklySlot], weekday: int) -> list[WeeklySlot]:
    return [slot for slot in slots if slot.is_active and slot.day_of_week == weekday]


def validate_availability(
    scheduled_at: datetime, duration: int, slots: Sequence[WeeklySlot]
) -> WeeklySlot:
    """Return the weekly window that fully contains the booking.

    Boundaries are inclusive on both ends. The end is measured as start plus
    duration, so a booking running past midnight never fits a window.
    """
    if not slots:
        raise NoAvailability("Tutor has no available time slots")
    scheduled_at = ensure_utc(scheduled_at)
    candidates = _slots_for_day(slots, day_of_week(scheduled_at))
    if not candidates:
        raise NoAvailability("Tutor is not available on this day")

    start_minutes = scheduled_at.hour * 60 + scheduled_at.minute
    end_minutes = start_minutes + duration
    for slot in candidates:
        if parse_clock(slot.start_time) <= start_minutes and end_minutes <= parse_clock(slot.end_time):
            return slot

    windows = ", ".join(f"{slot.start_time}-{slot.end_time}" for slot in candidates)
    raise OutsideWindow(f"Booking time must be within {windows} UTC")


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def booking_end(booking: ScheduledBooking) -> datetime:
    return ensure_utc(booking.scheduled_at) + timedelta(minutes=booking.duration)


def check_conflicts(
    scheduled_at: datetime,
    duration: int,
    tutor_id: int,
    existing_bookings: Iterable[ScheduledBooking],
    exclude_booking_id: int | None = None,
) -> ScheduledBooking | None:
    """First active booking of the tutor overlapping ``[start, start + duration)``."""
    start = ensure_utc(scheduled_at)
    end = start + timedelta(minutes=duration)
    for booking in existing_bookings:
        if booking.tutor_id != tutor_id:
            continue
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        if booking.status in INACTIVE_STATUSES:
            continue
        if overlaps(start, end, ensure_utc(booking.scheduled_at), booking_end(booking)):
            return booking
    return None


def get_available_time_slots(
    day: date,
    duration: int,
    slots: Sequence[WeeklySlot],
    existing_bookings: Sequence[ScheduledBooking],
    tutor_id: int,
) -> list[TimeSlot]:
    midnight = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
    step = int(SLOT_GRID_STEP.total_seconds() // 60)
    result: list[TimeSlot] = []
    for slot in _slots_for_day(slots, day_of_week(day)):
        window_end = parse_clock(slot.end_time)
        current = parse_clock(slot.start_time)
        while current + duration <= window_end:
            start = midnight + timedelta(minutes=current)
            conflict = check_conflicts(start, duration, tutor_id, existing_bookings)
            result.append(
                TimeSlot(
                    start=start,
                    end=start + timedelta(minutes=duration),
                    available=conflict is None,
                    reason="Time slot is already booked" if conflict else None,
                )
            )
            current += step
    return result


def get_available_dates(
    start_date: date,
    end_date: date,
    slots: Sequence[WeeklySlot],
    existing_bookings: Sequence[ScheduledBooking],
    tutor_id: int,
    duration: int,
) -> list[date]:
    dates = []
    current = start_date
    while current <= end_date:
        grid = get_available_time_slots(current, duration, slots, existing_bookings, tutor_id)
        if any(entry.available for entry in grid):
            dates.append(current)
        current += timedelta(days=1)
    return dates
