"""Booking lifecycle: create, confirm, cancel, complete and reschedule.

Every write that claims tutor time re-checks conflicts while holding a row
lock on the tutor profile, so two students racing for the same slot are
serialized per tutor. Payment and refund side effects live in
``payment_service`` and ``refund_service``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import ensure_utc, utc_now
from ..core.constants import COMPENSATION_MAX_ATTEMPTS
from ..core.exceptions import (
    AccessDenied,
    BookingError,
    BookingInternalError,
    Conflict,
    InvalidTransition,
    NotFound,
    PaymentSetupFailed,
    PolicyViolation,
    PreconditionFailed,
)
from ..db import models
from ..db.models.booking import BookingStatus
from ..db.models.tutor_profile import ApprovalStatus
from ..db.models.user import UserRole
from .availability_service import check_conflicts, validate_availability
from .booking_queries import active_bookings_for_tutor, active_bookings_near
from .booking_rules import (
    calculate_price,
    is_late_cancellation,
    validate_booking_time,
    validate_duration,
    validate_reschedule_window,
)
from .notification_service import notify_booking
from .payment_service import start_checkout
from .payments import BasePaymentGateway, GatewayError
from .penalty_service import PenaltyPolicy, RollingWindowPenaltyPolicy

logger = logging.getLogger(__name__)

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.pending: frozenset({BookingStatus.confirmed, BookingStatus.cancelled}),
    BookingStatus.confirmed: frozenset({BookingStatus.completed, BookingStatus.cancelled}),
    BookingStatus.completed: frozenset(),
    BookingStatus.cancelled: frozenset(),
    BookingStatus.refunded: frozenset(),
}
# Refunds run outside the lifecycle table; a cancelled booking may still hold money
REFUNDABLE_STATUSES = (
    BookingStatus.pending,
    BookingStatus.confirmed,
    BookingStatus.cancelled,
)

SLOT_TAKEN_MESSAGE = "This time slot is already booked. Please choose another time."
SLOT_JUST_TAKEN_MESSAGE = (
    "This time slot was just booked by another student. Please choose another time."
)
PENALIZED_MESSAGE = (
    "You are currently penalized for repeated late cancellations and cannot "
    "create new bookings until the penalty period ends."
)


@dataclass(slots=True)
class BookingCheckout:
    booking: models.Booking
    checkout_url: str | None
    session_id: str


def validate_transition(source: BookingStatus, target: BookingStatus) -> None:
    if target not in TRANSITIONS.get(source, frozenset()):
        raise InvalidTransition(source, target)


def get_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def _lock_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.execute(
        select(models.Booking)
        .where(models.Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def _lock_tutor(db: Session, tutor_id: int) -> models.TutorProfile:
    return db.execute(
        select(models.TutorProfile)
        .where(models.TutorProfile.id == tutor_id)
        .with_for_update()
    ).scalar_one()


def _is_tutor_of(booking: models.Booking, user: models.User) -> bool:
    return booking.tutor is not None and booking.tutor.user_id == user.id


def _ensure_tutor_of(booking: models.Booking, user: models.User) -> None:
    if not _is_tutor_of(booking, user):
        raise AccessDenied("Only the tutor of this booking can do this")


def _ensure_bookable(tutor: models.TutorProfile) -> None:
    if not tutor.is_active:
        raise PreconditionFailed("Tutor profile is not active")
    if tutor.approval_status != ApprovalStatus.approved:
        raise PreconditionFailed("Tutor profile is not approved")


def _claim_time(
    db: Session,
    *,
    tutor_id: int,
    scheduled_at: datetime,
    duration: int,
    write: Callable[[], models.Booking],
    exclude_booking_id: int | None = None,
) -> models.Booking:
    """Re-check conflicts under the tutor lock, then apply ``write``."""
    end = scheduled_at + timedelta(minutes=duration)
    transaction_ctx = db.begin_nested() if db.in_transaction() else db.begin()
    try:
        with transaction_ctx:
            _lock_tutor(db, tutor_id)
            nearby = active_bookings_near(db, tutor_id, scheduled_at, end)
            clash = check_conflicts(
                scheduled_at,
                duration,
                tutor_id,
                nearby,
                exclude_booking_id=exclude_booking_id,
            )
            if clash is not None:
                logger.info(
                    "Slot taken while booking",
                    extra={"tutor_id": tutor_id, "conflicting_booking_id": clash.id},
                )
                raise Conflict(SLOT_JUST_TAKEN_MESSAGE)
            booking = write()
        db.commit()
    except BookingError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "Failed to write booking",
            extra={"tutor_id": tutor_id, "scheduled_at": scheduled_at.isoformat()},
        )
        raise BookingInternalError("Failed to create booking. Please try again.") from exc
    db.refresh(booking)
    return booking


def _compensate_failed_checkout(db: Session, booking_id: int, reason: str) -> bool:
    """Delete a booking whose checkout could not be opened.

    Returns False when every attempt failed and the row is left behind.
    """
    for attempt in range(1, COMPENSATION_MAX_ATTEMPTS + 1):
        try:
            booking = db.get(models.Booking, booking_id)
            if booking is not None and booking.payment_id is None:
                db.delete(booking)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning(
                "Failed to delete booking after checkout failure",
                extra={"booking_id": booking_id, "attempt": attempt},
                exc_info=True,
            )
            continue
        logger.info(
            "Booking removed after checkout failure",
            extra={"booking_id": booking_id, "reason": reason},
        )
        return True
    logger.critical(
        "Booking left without a payment session; manual reconciliation required",
        extra={"booking_id": booking_id, "reason": reason},
    )
    return False


def create_booking(
    db: Session,
    gateway: BasePaymentGateway,
    student: models.User,
    tutor_id: int,
    scheduled_at: datetime,
    duration: int,
    notes: str | None = None,
    *,
    penalty_policy: PenaltyPolicy | None = None,
    now: datetime | None = None,
) -> BookingCheckout:
    now = now or utc_now()
    scheduled_at = ensure_utc(scheduled_at)
    penalty_policy = penalty_policy or RollingWindowPenaltyPolicy(db, now)
    if penalty_policy.is_penalized(student.id):
        raise PolicyViolation(PENALIZED_MESSAGE)

    tutor = db.get(models.TutorProfile, tutor_id)
    if tutor is None:
        raise NotFound("Tutor not found")
    _ensure_bookable(tutor)

    validate_duration(duration)
    validate_booking_time(scheduled_at, now)
    validate_availability(scheduled_at, duration, tutor.availability)
    if check_conflicts(scheduled_at, duration, tutor.id, active_bookings_for_tutor(db, tutor.id)):
        raise Conflict(SLOT_TAKEN_MESSAGE)

    price = calculate_price(duration, tutor.hourly_rate)
    student_id = student.id

    def insert() -> models.Booking:
        booking = models.Booking(
            student_id=student_id,
            tutor_id=tutor_id,
            scheduled_at=scheduled_at,
            duration=duration,
            status=BookingStatus.pending,
            price=price,
            notes=notes,
        )
        db.add(booking)
        db.flush()
        return booking

    booking = _claim_time(
        db,
        tutor_id=tutor_id,
        scheduled_at=scheduled_at,
        duration=duration,
        write=insert,
    )
    logger.info(
        "Booking created",
        extra={
            "booking_id": booking.id,
            "student_id": student_id,
            "tutor_id": tutor_id,
            "price": str(price),
        },
    )

    booking_id = booking.id
    try:
        checkout = start_checkout(db, gateway, booking, now)
    except (GatewayError, SQLAlchemyError) as exc:
        db.rollback()
        logger.error(
            "Failed to create checkout session",
            extra={"booking_id": booking_id, "error": str(exc)},
        )
        _compensate_failed_checkout(db, booking_id, str(exc))
        raise PaymentSetupFailed(
            "Failed to create payment session. Please try again."
        ) from exc
    return BookingCheckout(booking=booking, checkout_url=checkout.url, session_id=checkout.id)


def confirm_booking(
    db: Session,
    booking: models.Booking,
    actor: models.User,
    *,
    notifier=None,
) -> models.Booking:
    _ensure_tutor_of(booking, actor)
    booking = _lock_booking(db, booking.id)
    try:
        validate_transition(booking.status, BookingStatus.confirmed)
    except InvalidTransition:
        db.rollback()
        raise
    booking.status = BookingStatus.confirmed
    db.commit()
    db.refresh(booking)
    logger.info("Booking confirmed", extra={"booking_id": booking.id, "tutor_user_id": actor.id})
    notify_booking(notifier, "booking_confirmed", booking)
    return booking


def cancel_booking(
    db: Session,
    booking: models.Booking,
    actor: models.User,
    *,
    penalty_policy: PenaltyPolicy | None = None,
    notifier=None,
    now: datetime | None = None,
) -> models.Booking:
    """Cancel a pending or confirmed booking.

    Money is not returned here; refunds are a separate, explicit operation.
    A late cancellation by the student counts towards the penalty window.
    """
    now = now or utc_now()
    by_student = booking.student_id == actor.id
    if not (by_student or _is_tutor_of(booking, actor) or actor.role == UserRole.admin):
        raise AccessDenied("You cannot cancel this booking")

    booking = _lock_booking(db, booking.id)
    try:
        validate_transition(booking.status, BookingStatus.cancelled)
    except InvalidTransition:
        db.rollback()
        raise
    late = is_late_cancellation(booking.scheduled_at, now)
    booking.status = BookingStatus.cancelled
    booking.cancelled_at = now
    booking.cancelled_by = actor.id
    booking.is_late_cancellation = late
    if late and by_student:
        policy = penalty_policy or RollingWindowPenaltyPolicy(db, now)
        policy.record_late_cancellation(booking.student_id)
    db.commit()
    db.refresh(booking)
    logger.info(
        "Booking cancelled",
        extra={"booking_id": booking.id, "cancelled_by": actor.id, "late": late},
    )
    notify_booking(notifier, "booking_cancelled", booking)
    return booking


def end_call(
    db: Session,
    booking: models.Booking,
    actor: models.User,
    *,
    now: datetime | None = None,
) -> models.Booking:
    """Mark the lesson as held. Repeated calls return the booking unchanged."""
    _ensure_tutor_of(booking, actor)
    booking = _lock_booking(db, booking.id)
    if booking.call_ended_at is not None:
        db.rollback()
        return booking
    try:
        validate_transition(booking.status, BookingStatus.completed)
    except InvalidTransition:
        db.rollback()
        raise
    booking.call_ended_at = now or utc_now()
    booking.status = BookingStatus.completed
    db.commit()
    db.refresh(booking)
    logger.info("Booking completed", extra={"booking_id": booking.id})
    return booking


def update_status(
    db: Session,
    booking: models.Booking,
    actor: models.User,
    target: BookingStatus,
    *,
    penalty_policy: PenaltyPolicy | None = None,
    notifier=None,
    now: datetime | None = None,
) -> models.Booking:
    if target == BookingStatus.confirmed:
        return confirm_booking(db, booking, actor, notifier=notifier)
    if target == BookingStatus.cancelled:
        return cancel_booking(
            db, booking, actor, penalty_policy=penalty_policy, notifier=notifier, now=now
        )
    if target == BookingStatus.completed:
        return end_call(db, booking, actor, now=now)
    raise InvalidTransition(booking.status, target)


def reschedule_booking(
    db: Session,
    booking: models.Booking,
    actor: models.User,
    new_scheduled_at: datetime,
    *,
    now: datetime | None = None,
) -> models.Booking:
    """Move a pending booking to a new start time.

    Duration and price stay as booked. The status is left untouched.
    """
    now = now or utc_now()
    if booking.student_id != actor.id:
        raise AccessDenied("Only the student who booked can reschedule")
    if booking.status != BookingStatus.pending:
        raise PreconditionFailed("Only pending bookings can be rescheduled")
    validate_reschedule_window(booking.scheduled_at, now)

    new_scheduled_at = ensure_utc(new_scheduled_at)
    validate_booking_time(new_scheduled_at, now)
    tutor = booking.tutor
    validate_availability(new_scheduled_at, booking.duration, tutor.availability)
    existing = active_bookings_for_tutor(db, tutor.id)
    if check_conflicts(
        new_scheduled_at, booking.duration, tutor.id, existing, exclude_booking_id=booking.id
    ):
        raise Conflict(SLOT_TAKEN_MESSAGE)

    booking_id = booking.id
    previous = ensure_utc(booking.scheduled_at)

    def move() -> models.Booking:
        locked = _lock_booking(db, booking_id)
        if locked.status != BookingStatus.pending:
            raise PreconditionFailed("Only pending bookings can be rescheduled")
        locked.scheduled_at = new_scheduled_at
        return locked

    booking = _claim_time(
        db,
        tutor_id=tutor.id,
        scheduled_at=new_scheduled_at,
        duration=booking.duration,
        write=move,
        exclude_booking_id=booking_id,
    )
    logger.info(
        "Booking rescheduled",
        extra={
            "booking_id": booking_id,
            "from": previous.isoformat(),
            "to": new_scheduled_at.isoformat(),
        },
    )
    return booking
