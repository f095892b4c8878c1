from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from ...api import deps
from ...core.exceptions import BookingError
from ...db.session import get_db
from ...db import models, schemas
from ...services import booking_service, refund_service
from ...services.booking_queries import BookingFilter, list_bookings
from ...services.notification_service import NotificationService
from ...services.payments import BasePaymentGateway

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _tutor_profile_id(db: Session, user: models.User) -> int | None:
    return db.scalar(
        select(models.TutorProfile.id).where(models.TutorProfile.user_id == user.id)
    )


def _get_visible_booking(db: Session, booking_id: int, user: models.User) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if user.role == models.UserRole.admin or booking.student_id == user.id:
        return booking
    if booking.tutor is not None and booking.tutor.user_id == user.id:
        return booking
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.get("", response_model=schemas.BookingPage)
def get_bookings(
    status_filter: models.BookingStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    if user.role == models.UserRole.admin:
        booking_filter = BookingFilter(status=status_filter)
    elif user.role == models.UserRole.tutor:
        tutor_id = _tutor_profile_id(db, user)
        if tutor_id is None:
            raise HTTPException(status_code=404, detail="Tutor profile not found")
        booking_filter = BookingFilter(tutor_id=tutor_id, status=status_filter)
    else:
        booking_filter = BookingFilter(student_id=user.id, status=status_filter)
    items, total = list_bookings(db, booking_filter, limit=limit, offset=offset)
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@router.post("", response_model=schemas.BookingCheckout, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    student: models.User = Depends(deps.require_roles("student")),
    gateway: BasePaymentGateway = Depends(deps.get_payment_gateway),
):
    try:
        result = booking_service.create_booking(
            db,
            gateway,
            student,
            payload.tutor_id,
            payload.scheduled_at,
            payload.duration,
            payload.notes,
        )
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc
    return {
        "booking": result.booking,
        "checkout_url": result.checkout_url,
        "session_id": result.session_id,
    }


@router.get("/{booking_id}", response_model=schemas.Booking)
def get_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    return _get_visible_booking(db, booking_id, user)


@router.patch("/{booking_id}/status", response_model=schemas.Booking)
def update_booking_status(
    booking_id: int,
    payload: schemas.BookingStatusUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
    notifier: NotificationService = Depends(deps.get_notifier),
):
    booking = _get_visible_booking(db, booking_id, user)
    try:
        return booking_service.update_status(db, booking, user, payload.status, notifier=notifier)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc


@router.post("/{booking_id}/confirm", response_model=schemas.Booking)
def confirm_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.require_roles("tutor")),
    notifier: NotificationService = Depends(deps.get_notifier),
):
    booking = _get_visible_booking(db, booking_id, user)
    try:
        return booking_service.confirm_booking(db, booking, user, notifier=notifier)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc


@router.post("/{booking_id}/cancel", response_model=schemas.Booking)
def cancel_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
    notifier: NotificationService = Depends(deps.get_notifier),
):
    booking = _get_visible_booking(db, booking_id, user)
    try:
        return booking_service.cancel_booking(db, booking, user, notifier=notifier)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc


@router.post("/{booking_id}/reschedule", response_model=schemas.Booking)
def reschedule_booking(
    booking_id: int,
    payload: schemas.BookingReschedule,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    booking = _get_visible_booking(db, booking_id, user)
    try:
        return booking_service.reschedule_booking(db, booking, user, payload.scheduled_at)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc


@router.post("/{booking_id}/end-call", response_model=schemas.Booking)
def end_call(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    booking = _get_visible_booking(db, booking_id, user)
    try:
        return booking_service.end_call(db, booking, user)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc


@router.post("/{booking_id}/refund", response_model=schemas.Refund)
def refund_booking(
    booking_id: int,
    payload: schemas.RefundCreate | None = None,
    db: Session = Depends(get_db),
    _: models.User = Depends(deps.require_roles("admin")),
    gateway: BasePaymentGateway = Depends(deps.get_payment_gateway),
):
    reason = payload.reason if payload else "requested_by_customer"
    try:
        return refund_service.refund_booking(db, gateway, booking_id, reason)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc
