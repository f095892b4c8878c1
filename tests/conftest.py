import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from tutorbook.config import Settings
from tutorbook.db.session import Base
from tutorbook.db import models
from tutorbook.services.payments import (
    BasePaymentGateway,
    CheckoutSession,
    PaymentIntentInfo,
    SessionInfo,
)

# Monday; tutors in these tests teach on Mondays 09:00-18:00 UTC
NOW = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)
LESSON_AT = datetime(2030, 1, 14, 10, 0, tzinfo=timezone.utc)


class FakeGateway(BasePaymentGateway):
    """Recording gateway with switchable failures."""

    def __init__(self) -> None:
        super().__init__(Settings())
        self.checkouts: list[dict] = []
        self.refund_calls: list[dict] = []
        self.checkout_error: Exception | None = None
        self.refund_errors: list[Exception] = []
        self.intent_status = "succeeded"
        self.intent_amount_cents: int | None = None
        self.amount_refunded_cents = 0

    def create_checkout_session(self, **kwargs) -> CheckoutSession:
        if self.checkout_error is not None:
            raise self.checkout_error
        self.checkouts.append(kwargs)
        session_id = f"cs_test_{len(self.checkouts)}"
        return CheckoutSession(id=session_id, url=f"https://pay.test/{session_id}")

    def retrieve_session(self, session_id: str) -> SessionInfo:
        return SessionInfo(id=session_id, payment_status="paid", payment_intent_id=f"pi_{session_id}")

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        return PaymentIntentInfo(
            id=payment_intent_id,
            status=self.intent_status,
            amount_cents=self.intent_amount_cents,
            amount_refunded_cents=self.amount_refunded_cents,
        )

    def create_refund(self, **kwargs) -> str:
        self.refund_calls.append(kwargs)
        if self.refund_errors:
            raise self.refund_errors.pop(0)
        return f"re_test_{len(self.refund_calls)}"

    def parse_webhook(self, payload: bytes, signature: str | None) -> dict:
        return json.loads(payload)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str | None, dict]] = []

    def send(self, kind: str, recipient: str | None, template_data: dict) -> bool:
        self.sent.append((kind, recipient, template_data))
        return True


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


def create_user(session, email, role=models.UserRole.student, full_name=None):
    user = models.User(email=email, full_name=full_name or email.split("@")[0], role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def create_tutor(
    session,
    email="tutor@example.com",
    hourly_rate=Decimal("30.00"),
    approval_status=models.ApprovalStatus.approved,
    is_active=True,
    windows=((1, "09:00", "18:00"),),
):
    user = create_user(session, email, role=models.UserRole.tutor)
    tutor = models.TutorProfile(
        user_id=user.id,
        hourly_rate=hourly_rate,
        approval_status=approval_status,
        is_active=is_active,
    )
    session.add(tutor)
    session.flush()
    for day, start, end in windows:
        session.add(
            models.AvailabilitySlot(
                tutor_id=tutor.id, day_of_week=day, start_time=start, end_time=end
            )
        )
    session.commit()
    session.refresh(tutor)
    return tutor


def create_booking_row(
    session,
    student,
    tutor,
    scheduled_at=LESSON_AT,
    duration=60,
    status=models.BookingStatus.pending,
    payment_id=None,
    price=Decimal("30.00"),
):
    booking = models.Booking(
        student_id=student.id,
        tutor_id=tutor.id,
        scheduled_at=scheduled_at,
        duration=duration,
        status=status,
        price=price,
        payment_id=payment_id,
    )
    session.add(booking)
    session.commit()
    session.refresh(booking)
    return booking


@pytest.fixture()
def student(db_session):
    return create_user(db_session, "student@example.com", full_name="Sam Student")


@pytest.fixture()
def tutor(db_session):
    return create_tutor(db_session)


@pytest.fixture()
def make_booking(db_session):
    def factory(student, tutor, **kwargs):
        return create_booking_row(db_session, student, tutor, **kwargs)

    return factory

