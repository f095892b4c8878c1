"""Typed query shapes over the bookings table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session, selectinload

from ..core.constants import VALID_DURATIONS
from ..db import models
from ..db.models.booking import INACTIVE_STATUSES


@dataclass(frozen=True, slots=True)
class BookingFilter:
    student_id: int | None = None
    tutor_id: int | None = None
    status: models.BookingStatus | None = None
    scheduled_before: datetime | None = None
    scheduled_from: datetime | None = None
    has_payment: bool | None = None
    active_only: bool = False

    def apply(self, stmt: Select) -> Select:
        if self.student_id is not None:
            stmt = stmt.where(models.Booking.student_id == self.student_id)
        if self.tutor_id is not None:
            stmt = stmt.where(models.Booking.tutor_id == self.tutor_id)
        if self.status is not None:
            stmt = stmt.where(models.Booking.status == self.status)
        if self.scheduled_before is not None:
            stmt = stmt.where(models.Booking.scheduled_at < self.scheduled_before)
        if self.scheduled_from is not None:
            stmt = stmt.where(models.Booking.scheduled_at >= self.scheduled_from)
        if self.has_payment is True:
            stmt = stmt.where(models.Booking.payment_id.is_not(None))
        elif self.has_payment is False:
            stmt = stmt.where(models.Booking.payment_id.is_(None))
        if self.active_only:
            stmt = stmt.where(models.Booking.status.not_in(INACTIVE_STATUSES))
        return stmt


def list_bookings(
    db: Session,
    booking_filter: BookingFilter,
    *,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[models.Booking], int]:
    stmt = (
        booking_filter.apply(select(models.Booking))
        .options(
            selectinload(models.Booking.student),
            selectinload(models.Booking.tutor).selectinload(models.TutorProfile.user),
        )
        .order_by(models.Booking.scheduled_at.desc(), models.Booking.id.desc())
        .limit(limit)
        .offset(offset)
    )
    total = db.scalar(booking_filter.apply(select(func.count(models.Booking.id))))
    return list(db.execute(stmt).scalars().all()), int(total or 0)


def active_bookings_for_tutor(db: Session, tutor_id: int) -> list[models.Booking]:
    stmt = BookingFilter(tutor_id=tutor_id, active_only=True).apply(
        select(models.Booking).order_by(models.Booking.scheduled_at, models.Booking.id)
    )
    return list(db.execute(stmt).scalars().all())


def active_bookings_near(
    db: Session, tutor_id: int, start: datetime, end: datetime
) -> list[models.Booking]:
    """Active bookings of the tutor that could overlap ``[start, end)``.

    A booking starting before ``start`` can still overlap it, so the lower
    bound is widened by the longest allowed duration.
    """
    lower = start - timedelta(minutes=max(VALID_DURATIONS))
    stmt = (
        BookingFilter(tutor_id=tutor_id, scheduled_from=lower, scheduled_before=end, active_only=True)
        .apply(select(models.Booking))
        .order_by(models.Booking.scheduled_at, models.Booking.id)
    )
    return list(db.execute(stmt).scalars().all())


def expired_unconfirmed_bookings(db: Session, now: datetime, limit: int) -> list[models.Booking]:
    stmt = (
        BookingFilter(
            status=models.BookingStatus.pending,
            scheduled_before=now,
            has_payment=True,
        )
        .apply(select(models.Booking))
        .options(selectinload(models.Booking.student))
        .order_by(models.Booking.scheduled_at, models.Booking.id)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def upcoming_confirmed_bookings(
    db: Session, window_start: datetime, window_end: datetime
) -> list[models.Booking]:
    stmt = (
        BookingFilter(
            status=models.BookingStatus.confirmed,
            scheduled_from=window_start,
            scheduled_before=window_end,
        )
        .apply(select(models.Booking))
        .options(
            selectinload(models.Booking.student),
            selectinload(models.Booking.tutor).selectinload(models.TutorProfile.user),
        )
        .order_by(models.Booking.scheduled_at)
    )
    return list(db.execute(stmt).scalars().all())


def count_late_cancellations(db: Session, student_id: int, since: datetime) -> int:
    count = db.scalar(
        select(func.count(models.Booking.id)).where(
            models.Booking.student_id == student_id,
            models.Booking.status == models.BookingStatus.cancelled,
            models.Booking.is_late_cancellation.is_(True),
            models.Booking.cancelled_at >= since,
        )
    )
    return int(count or 0)
