import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from ...api import deps
from ...core.exceptions import BookingError
from ...db.session import get_db
from ...db import models, schemas
from ...services import booking_service, payment_service
from ...services.notification_service import NotificationService
from ...services.payments import BasePaymentGateway, GatewayError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/checkout/{booking_id}", response_model=schemas.Checkout)
def create_checkout(
    booking_id: int,
    db: Session = Depends(get_db),
    student: models.User = Depends(deps.require_roles("student")),
    gateway: BasePaymentGateway = Depends(deps.get_payment_gateway),
):
    try:
        booking = booking_service.get_booking(db, booking_id)
        session = payment_service.create_checkout_for_booking(db, gateway, booking, student)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail="Failed to create payment session") from exc
    return {"checkout_url": session.url, "session_id": session.id}


@router.post("/webhook")
async def payments_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    gateway: BasePaymentGateway = Depends(deps.get_payment_gateway),
    notifier: NotificationService = Depends(deps.get_notifier),
):
    payload = await request.body()
    try:
        event = gateway.parse_webhook(payload, stripe_signature)
    except GatewayError as exc:
        logger.warning("Rejected webhook", extra={"error": exc.message})
        raise HTTPException(status_code=400, detail=exc.message) from exc
    try:
        outcome = await run_in_threadpool(payment_service.handle_webhook_event, db, event, notifier)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Webhook handler failed", extra={"event_id": event.get("id")})
        # A 5xx makes the provider deliver the event again
        raise HTTPException(status_code=500, detail="Webhook handler failed") from exc
    return {"received": True, "outcome": outcome}
