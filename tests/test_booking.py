import itertools
import logging
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from conftest import LESSON_AT, NOW, create_tutor, create_user
from tutorbook.core.clock import ensure_utc
from tutorbook.core.exceptions import (
    AccessDenied,
    Conflict,
    InvalidDuration,
    InvalidTime,
    InvalidTransition,
    NoAvailability,
    NotFound,
    OutsideWindow,
    PaymentSetupFailed,
    PolicyViolation,
    PreconditionFailed,
    RescheduleWindowClosed,
)
from tutorbook.db import models
from tutorbook.services import booking_service, payment_service
from tutorbook.services.payments import GatewayError


def all_bookings(db_session):
    return db_session.execute(select(models.Booking)).scalars().all()


def book(db_session, gateway, student, tutor, scheduled_at=LESSON_AT, duration=60, now=NOW):
    return booking_service.create_booking(
        db_session, gateway, student, tutor.id, scheduled_at, duration, now=now
    )


def test_create_booking_opens_checkout(db_session, gateway, student, tutor):
    result = book(db_session, gateway, student, tutor)

    booking = result.booking
    assert booking.status == models.BookingStatus.pending
    assert booking.price == Decimal("30.00")
    assert booking.checkout_session_id == result.session_id == "cs_test_1"
    assert result.checkout_url == "https://pay.test/cs_test_1"
    assert booking.payment_id is None

    checkout = gateway.checkouts[0]
    assert checkout["amount_cents"] == 3000
    assert checkout["currency"] == "usd"
    assert checkout["metadata"]["booking_id"] == str(booking.id)
    assert checkout["expires_at"] == NOW + timedelta(hours=23)
    assert checkout["idempotency_key"].startswith(f"checkout-{booking.id}-")


def test_price_follows_duration(db_session, gateway, student, tutor):
    result = book(db_session, gateway, student, tutor, duration=90)
    assert result.booking.price == Decimal("45.00")
    assert gateway.checkouts[0]["amount_cents"] == 4500


def test_penalized_student_cannot_book(db_session, gateway, student, tutor):
    student.penalty_until = NOW + timedelta(days=1)
    db_session.commit()

    with pytest.raises(PolicyViolation, match="penalized .* until the penalty period ends"):
        book(db_session, gateway, student, tutor)
    assert all_bookings(db_session) == []


def test_expired_penalty_does_not_block(db_session, gateway, student, tutor):
    student.penalty_until = NOW - timedelta(minutes=1)
    db_session.commit()

    book(db_session, gateway, student, tutor)
    assert len(all_bookings(db_session)) == 1


def test_unknown_tutor(db_session, gateway, student):
    with pytest.raises(NotFound):
        booking_service.create_booking(db_session, gateway, student, 999, LESSON_AT, 60, now=NOW)


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"is_active": False}, "not active"),
        ({"approval_status": models.ApprovalStatus.pending}, "not approved"),
        ({"approval_status": models.ApprovalStatus.rejected}, "not approved"),
    ],
)
def test_tutor_must_be_bookable(db_session, gateway, student, kwargs, message):
    tutor = create_tutor(db_session, **kwargs)
    with pytest.raises(PreconditionFailed, match=message):
        book(db_session, gateway, student, tutor)
    assert gateway.checkouts == []


@pytest.mark.parametrize(
    ("scheduled_at", "duration", "error"),
    [
        (LESSON_AT, 45, InvalidDuration),
        (NOW + timedelta(hours=12), 60, InvalidTime),
        (NOW + timedelta(days=91), 60, InvalidTime),
        (LESSON_AT + timedelta(days=1), 60, NoAvailability),
        (LESSON_AT.replace(hour=17, minute=30), 60, OutsideWindow),
    ],
)
def test_rule_violations_create_nothing(db_session, gateway, student, tutor, scheduled_at, duration, error):
    with pytest.raises(error):
        book(db_session, gateway, student, tutor, scheduled_at=scheduled_at, duration=duration)
    assert all_bookings(db_session) == []
    assert gateway.checkouts == []


def test_overlapping_booking_is_rejected(db_session, gateway, student, tutor, make_booking):
    other = create_user(db_session, "other@example.com")
    make_booking(other, tutor, scheduled_at=LESSON_AT)

    with pytest.raises(Conflict, match="already booked"):
        book(db_session, gateway, student, tutor, scheduled_at=LESSON_AT + timedelta(minutes=30), duration=30)
    assert len(all_bookings(db_session)) == 1


def test_back_to_back_bookings_are_allowed(db_session, gateway, student, tutor, make_booking):
    make_booking(student, tutor, scheduled_at=LESSON_AT)
    book(db_session, gateway, student, tutor, scheduled_at=LESSON_AT + timedelta(hours=1))
    assert len(all_bookings(db_session)) == 2


def test_cancelled_booking_frees_the_slot(db_session, gateway, student, tutor, make_booking):
    make_booking(student, tutor, status=models.BookingStatus.cancelled)
    book(db_session, gateway, student, tutor)
    assert len(all_bookings(db_session)) == 2


def test_slot_taken_between_check_and_insert(db_session, gateway, student, tutor, make_booking, monkeypatch):
    other = create_user(db_session, "other@example.com")
    make_booking(other, tutor, scheduled_at=LESSON_AT)
    # The first look at the calendar misses the competing booking
    monkeypatch.setattr(booking_service, "active_bookings_for_tutor", lambda db, tutor_id: [])

    with pytest.raises(Conflict, match="just booked by another student"):
        book(db_session, gateway, student, tutor)
    assert len(all_bookings(db_session)) == 1
    assert gateway.checkouts == []


def test_checkout_failure_removes_booking(db_session, gateway, student, tutor):
    gateway.checkout_error = GatewayError("Card processor unavailable", transient=True)

    with pytest.raises(PaymentSetupFailed):
        book(db_session, gateway, student, tutor)
    assert all_bookings(db_session) == []


def test_failed_compensation_is_reported(db_session, student, tutor, make_booking, monkeypatch, caplog):
    booking = make_booking(student, tutor)

    def broken_delete(_instance):
        raise OperationalError("DELETE FROM bookings", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "delete", broken_delete)
    with caplog.at_level(logging.CRITICAL, logger="tutorbook.services.booking_service"):
        removed = booking_service._compensate_failed_checkout(db_session, booking.id, "boom")

    assert removed is False
    assert "manual reconciliation required" in caplog.text


def test_tutor_confirms_booking(db_session, student, tutor, make_booking, notifier):
    booking = make_booking(student, tutor)
    confirmed = booking_service.confirm_booking(db_session, booking, tutor.user, notifier=notifier)

    assert confirmed.status == models.BookingStatus.confirmed
    kinds = [kind for kind, _, _ in notifier.sent]
    assert kinds == ["booking_confirmed", "booking_confirmed"]
    assert {recipient for _, recipient, _ in notifier.sent} == {"student@example.com", "tutor@example.com"}


def test_only_own_tutor_can_confirm(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor)
    stranger = create_tutor(db_session, email="stranger@example.com")

    with pytest.raises(AccessDenied):
        booking_service.confirm_booking(db_session, booking, stranger.user)
    with pytest.raises(AccessDenied):
        booking_service.confirm_booking(db_session, booking, student)
    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.pending


@pytest.mark.parametrize(
    "status",
    [
        models.BookingStatus.confirmed,
        models.BookingStatus.completed,
        models.BookingStatus.cancelled,
        models.BookingStatus.refunded,
    ],
)
def test_confirm_only_from_pending(db_session, student, tutor, make_booking, status):
    booking = make_booking(student, tutor, status=status)
    with pytest.raises(InvalidTransition, match=f"from {status.value} to confirmed"):
        booking_service.confirm_booking(db_session, booking, tutor.user)


@pytest.mark.parametrize("target", [models.BookingStatus.pending, models.BookingStatus.refunded])
def test_status_update_rejects_non_lifecycle_targets(db_session, student, tutor, make_booking, target):
    booking = make_booking(student, tutor)
    with pytest.raises(InvalidTransition):
        booking_service.update_status(db_session, booking, tutor.user, target)


@pytest.mark.parametrize(
    ("source", "target"), list(itertools.product(models.BookingStatus, repeat=2))
)
def test_only_listed_transitions_are_allowed(source, target):
    allowed = {
        (models.BookingStatus.pending, models.BookingStatus.confirmed),
        (models.BookingStatus.pending, models.BookingStatus.cancelled),
        (models.BookingStatus.confirmed, models.BookingStatus.completed),
        (models.BookingStatus.confirmed, models.BookingStatus.cancelled),
    }
    if (source, target) in allowed:
        booking_service.validate_transition(source, target)
    else:
        with pytest.raises(InvalidTransition):
            booking_service.validate_transition(source, target)


def test_status_update_dispatches(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor)
    booking = booking_service.update_status(
        db_session, booking, tutor.user, models.BookingStatus.confirmed
    )
    booking = booking_service.update_status(
        db_session, booking, tutor.user, models.BookingStatus.completed, now=LESSON_AT + timedelta(hours=1)
    )
    assert booking.status == models.BookingStatus.completed


def test_late_cancellation_by_student_is_flagged(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor)
    now = LESSON_AT - timedelta(hours=11, minutes=59)

    cancelled = booking_service.cancel_booking(db_session, booking, student, now=now)

    assert cancelled.status == models.BookingStatus.cancelled
    assert cancelled.is_late_cancellation is True
    assert cancelled.cancelled_by == student.id
    assert ensure_utc(cancelled.cancelled_at) == now


def test_early_cancellation_is_not_late(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor, status=models.BookingStatus.confirmed)
    cancelled = booking_service.cancel_booking(
        db_session, booking, student, now=LESSON_AT - timedelta(hours=12, minutes=1)
    )
    assert cancelled.is_late_cancellation is False


def test_cancel_does_not_refund(db_session, gateway, student, tutor, make_booking):
    booking = make_booking(student, tutor, payment_id="cs_paid")
    booking_service.cancel_booking(db_session, booking, student, now=NOW)

    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.cancelled
    assert booking.payment_id == "cs_paid"
    assert gateway.refund_calls == []


def test_cancel_permissions(db_session, student, tutor, make_booking):
    stranger = create_user(db_session, "stranger@example.com")
    admin = create_user(db_session, "admin@example.com", role=models.UserRole.admin)
    booking = make_booking(student, tutor)

    with pytest.raises(AccessDenied):
        booking_service.cancel_booking(db_session, booking, stranger, now=NOW)
    cancelled = booking_service.cancel_booking(db_session, booking, admin, now=NOW)
    assert cancelled.cancelled_by == admin.id


@pytest.mark.parametrize(
    "status",
    [models.BookingStatus.completed, models.BookingStatus.cancelled, models.BookingStatus.refunded],
)
def test_terminal_bookings_cannot_be_cancelled(db_session, student, tutor, make_booking, status):
    booking = make_booking(student, tutor, status=status)
    with pytest.raises(InvalidTransition):
        booking_service.cancel_booking(db_session, booking, student, now=NOW)


def _late_cancel(db_session, student, tutor, make_booking, hour):
    lesson = LESSON_AT.replace(hour=hour)
    booking = make_booking(student, tutor, scheduled_at=lesson)
    booking_service.cancel_booking(db_session, booking, student, now=lesson - timedelta(hours=1))
    return lesson - timedelta(hours=1)


def test_two_late_cancellations_are_tolerated(db_session, student, tutor, make_booking):
    _late_cancel(db_session, student, tutor, make_booking, 10)
    _late_cancel(db_session, student, tutor, make_booking, 12)

    db_session.refresh(student)
    assert student.penalty_until is None


def test_third_late_cancellation_applies_penalty(db_session, gateway, student, tutor, make_booking):
    _late_cancel(db_session, student, tutor, make_booking, 10)
    _late_cancel(db_session, student, tutor, make_booking, 12)
    last = _late_cancel(db_session, student, tutor, make_booking, 14)

    db_session.refresh(student)
    assert ensure_utc(student.penalty_until) == last + timedelta(days=7)

    with pytest.raises(PolicyViolation):
        booking_service.create_booking(
            db_session, gateway, student, tutor.id, last + timedelta(days=2), 60, now=last
        )


def test_late_cancellations_by_tutor_do_not_penalize_student(db_session, student, tutor, make_booking):
    for hour in (10, 12, 14):
        lesson = LESSON_AT.replace(hour=hour)
        booking = make_booking(student, tutor, scheduled_at=lesson)
        booking_service.cancel_booking(db_session, booking, tutor.user, now=lesson - timedelta(hours=1))

    db_session.refresh(student)
    assert student.penalty_until is None


def test_end_call_completes_and_is_idempotent(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor, status=models.BookingStatus.confirmed)
    ended_at = LESSON_AT + timedelta(hours=1)

    completed = booking_service.end_call(db_session, booking, tutor.user, now=ended_at)
    assert completed.status == models.BookingStatus.completed
    assert ensure_utc(completed.call_ended_at) == ended_at

    again = booking_service.end_call(db_session, completed, tutor.user, now=ended_at + timedelta(minutes=5))
    assert ensure_utc(again.call_ended_at) == ended_at


def test_end_call_requires_confirmation(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor)
    with pytest.raises(InvalidTransition):
        booking_service.end_call(db_session, booking, tutor.user, now=LESSON_AT)
    with pytest.raises(AccessDenied):
        booking_service.end_call(db_session, booking, student, now=LESSON_AT)


def test_reschedule_moves_pending_booking(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor)
    new_time = LESSON_AT + timedelta(hours=3)

    moved = booking_service.reschedule_booking(db_session, booking, student, new_time, now=NOW)

    assert ensure_utc(moved.scheduled_at) == new_time
    assert moved.status == models.BookingStatus.pending
    assert moved.price == Decimal("30.00")


def test_reschedule_may_overlap_its_own_old_time(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor)
    moved = booking_service.reschedule_booking(
        db_session, booking, student, LESSON_AT + timedelta(minutes=30), now=NOW
    )
    assert ensure_utc(moved.scheduled_at) == LESSON_AT + timedelta(minutes=30)


def test_reschedule_rules(db_session, student, tutor, make_booking):
    other = create_user(db_session, "other@example.com")
    make_booking(other, tutor, scheduled_at=LESSON_AT + timedelta(hours=2))
    booking = make_booking(student, tutor)

    with pytest.raises(AccessDenied):
        booking_service.reschedule_booking(db_session, booking, tutor.user, LESSON_AT, now=NOW)
    with pytest.raises(RescheduleWindowClosed):
        booking_service.reschedule_booking(
            db_session,
            booking,
            student,
            LESSON_AT + timedelta(days=1),
            now=LESSON_AT - timedelta(hours=3),
        )
    with pytest.raises(Conflict):
        booking_service.reschedule_booking(
            db_session, booking, student, LESSON_AT + timedelta(hours=2, minutes=30), now=NOW
        )
    with pytest.raises(OutsideWindow):
        booking_service.reschedule_booking(
            db_session, booking, student, LESSON_AT.replace(hour=18), now=NOW
        )


def test_confirmed_booking_cannot_be_rescheduled(db_session, student, tutor, make_booking):
    booking = make_booking(student, tutor, status=models.BookingStatus.confirmed)
    with pytest.raises(PreconditionFailed):
        booking_service.reschedule_booking(
            db_session, booking, student, LESSON_AT + timedelta(hours=2), now=NOW
        )


def test_booking_from_request_to_completed_lesson(db_session, gateway, notifier, student, tutor):
    result = book(db_session, gateway, student, tutor, now=LESSON_AT - timedelta(hours=48))
    booking = result.booking
    assert booking.status == models.BookingStatus.pending
    assert booking.price == Decimal("30.00")

    booking = booking_service.confirm_booking(db_session, booking, tutor.user, notifier=notifier)
    assert booking.status == models.BookingStatus.confirmed

    event = {
        "id": "evt_paid",
        "type": "checkout.session.completed",
        "session": {
            "id": result.session_id,
            "payment_status": "paid",
            "metadata": {"booking_id": str(booking.id)},
        },
    }
    assert payment_service.handle_webhook_event(db_session, event, notifier) == "recorded"
    db_session.refresh(booking)
    assert booking.payment_id == result.session_id
    assert booking.status == models.BookingStatus.confirmed

    booking = booking_service.end_call(db_session, booking, tutor.user, now=LESSON_AT + timedelta(hours=1))
    assert booking.status == models.BookingStatus.completed
