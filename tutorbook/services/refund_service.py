"""Idempotent refunds through the payment gateway.

A refund is first reconciled against the provider: a payment that is already
refunded (or cancelled) there is recorded locally without issuing another
refund. Transient gateway failures are retried with a linear backoff while
reusing one idempotency key, so a retry can never refund twice.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.constants import REFUND_MAX_RETRIES, REFUND_RETRY_DELAY_SECONDS
from ..core.exceptions import (
    BookingInternalError,
    InvalidTransition,
    NoPayment,
    NotFound,
    RefundFailed,
)
from ..db import models
from ..db.models.booking import BookingStatus
from .booking_rules import to_cents
from .booking_service import REFUNDABLE_STATUSES
from .payments import BasePaymentGateway, GatewayError

logger = logging.getLogger(__name__)

ALREADY_REFUNDED_CODES = {"charge_already_refunded"}


@dataclass(slots=True)
class RefundResult:
    booking_id: int
    already_refunded: bool
    refund_id: str | None = None
    amount: Decimal | None = None


def _is_already_refunded(exc: GatewayError) -> bool:
    return exc.code in ALREADY_REFUNDED_CODES or "already been refunded" in exc.message.lower()


def _load_fresh(db: Session, booking_id: int, *, lock: bool = False) -> models.Booking:
    stmt = (
        select(models.Booking)
        .where(models.Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    booking = db.execute(stmt).scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def _refund_at_gateway(
    gateway: BasePaymentGateway,
    booking: models.Booking,
    reason: str,
    idempotency_key: str,
) -> str | None:
    """Issue the refund. Returns None when the provider already refunded it."""
    session = gateway.retrieve_session(booking.payment_id)
    if not session.payment_intent_id:
        raise RefundFailed("Payment session has no payment intent to refund")
    intent = gateway.retrieve_payment_intent(session.payment_intent_id)
    if intent.status == "canceled" or intent.amount_refunded_cents > 0:
        logger.info(
            "Payment already refunded at provider",
            extra={"booking_id": booking.id, "payment_intent_id": intent.id},
        )
        return None

    amount_cents = to_cents(booking.price)
    if amount_cents <= 0 or (
        intent.amount_cents is not None and amount_cents > intent.amount_cents
    ):
        raise RefundFailed(
            f"Invalid refund amount {amount_cents} for payment of {intent.amount_cents}"
        )
    return gateway.create_refund(
        payment_intent_id=intent.id,
        amount_cents=amount_cents,
        idempotency_key=idempotency_key,
        reason=reason,
        metadata={"booking_id": str(booking.id)},
    )


def _record_refund(db: Session, booking_id: int, refund_id: str | None) -> models.Booking:
    try:
        booking = _load_fresh(db, booking_id, lock=True)
        if booking.status != BookingStatus.refunded:
            booking.status = BookingStatus.refunded
        if refund_id and not booking.refund_id:
            booking.refund_id = refund_id
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.critical(
            "Refund issued but booking was not updated",
            extra={"booking_id": booking_id, "refund_id": refund_id},
            exc_info=True,
        )
        raise BookingInternalError("Refund issued but booking could not be updated") from exc
    db.refresh(booking)
    return booking


def refund_booking(
    db: Session,
    gateway: BasePaymentGateway,
    booking_id: int,
    reason: str = "requested_by_customer",
    *,
    max_retries: int = REFUND_MAX_RETRIES,
    retry_delay: float = REFUND_RETRY_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> RefundResult:
    booking = _load_fresh(db, booking_id)
    if booking.status == BookingStatus.refunded:
        db.rollback()
        return RefundResult(
            booking_id=booking.id,
            already_refunded=True,
            refund_id=booking.refund_id,
            amount=booking.price,
        )
    if not booking.payment_id:
        db.rollback()
        raise NoPayment("Booking has no payment to refund")
    if booking.status not in REFUNDABLE_STATUSES:
        db.rollback()
        raise InvalidTransition(booking.status, BookingStatus.refunded)

    idempotency_key = f"refund-{booking.id}-{uuid.uuid4().hex}"
    attempt = 0
    while True:
        try:
            refund_id = _refund_at_gateway(gateway, booking, reason, idempotency_key)
            already_refunded = refund_id is None
            break
        except GatewayError as exc:
            if _is_already_refunded(exc):
                logger.info(
                    "Provider reports charge already refunded",
                    extra={"booking_id": booking_id},
                )
                refund_id, already_refunded = None, True
                break
            if exc.transient and attempt < max_retries:
                attempt += 1
                logger.warning(
                    "Transient refund failure, retrying",
                    extra={"booking_id": booking_id, "attempt": attempt, "error": exc.message},
                )
                sleep(retry_delay * attempt)
                continue
            logger.error(
                "Refund failed",
                extra={"booking_id": booking_id, "attempts": attempt + 1, "error": exc.message},
            )
            raise RefundFailed(f"Refund failed: {exc.message}") from exc

    booking = _record_refund(db, booking_id, refund_id)
    logger.info(
        "Booking refunded",
        extra={
            "booking_id": booking_id,
            "refund_id": refund_id,
            "already_refunded": already_refunded,
            "reason": reason,
        },
    )
    return RefundResult(
        booking_id=booking_id,
        already_refunded=already_refunded,
        refund_id=booking.refund_id,
        amount=booking.price,
    )
