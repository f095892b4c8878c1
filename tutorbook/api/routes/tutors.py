from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from ...core.clock import utc_now
from ...core.constants import MAX_ADVANCE_BOOKING, MIN_ADVANCE_BOOKING
from ...db.session import get_db
from ...db import models, schemas
from ...services import availability_service
from ...services.booking_queries import active_bookings_for_tutor
from ...services.booking_rules import validate_duration
from ...core.exceptions import BookingError
from ...api import deps

router = APIRouter(prefix="/tutors", tags=["tutors"])


def _get_bookable_tutor(db: Session, tutor_id: int) -> models.TutorProfile:
    tutor = db.get(models.TutorProfile, tutor_id)
    if not tutor or not tutor.is_bookable:
        raise HTTPException(status_code=404, detail="Tutor not found")
    return tutor


@router.get("/{tutor_id}/slots", response_model=list[schemas.TimeSlot])
def get_time_slots(
    tutor_id: int,
    day: date,
    duration: int = 60,
    db: Session = Depends(get_db),
):
    try:
        validate_duration(duration)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc
    tutor = _get_bookable_tutor(db, tutor_id)
    slots = availability_service.get_available_time_slots(
        day,
        duration,
        tutor.availability,
        active_bookings_for_tutor(db, tutor.id),
        tutor.id,
    )
    earliest = utc_now() + MIN_ADVANCE_BOOKING
    for slot in slots:
        if slot.available and slot.start <= earliest:
            slot.available = False
            slot.reason = "Too soon to book"
    return slots


@router.get("/{tutor_id}/available-dates", response_model=schemas.AvailableDates)
def get_available_dates(
    tutor_id: int,
    duration: int = 60,
    start: date | None = None,
    days: int = Query(default=30, ge=1, le=MAX_ADVANCE_BOOKING.days),
    db: Session = Depends(get_db),
):
    try:
        validate_duration(duration)
    except BookingError as exc:
        raise deps.as_http_error(exc) from exc
    tutor = _get_bookable_tutor(db, tutor_id)
    start = start or (utc_now() + MIN_ADVANCE_BOOKING).date()
    dates = availability_service.get_available_dates(
        start,
        start + timedelta(days=days - 1),
        tutor.availability,
        active_bookings_for_tutor(db, tutor.id),
        tutor.id,
        duration,
    )
    return {"tutor_id": tutor.id, "duration": duration, "dates": dates}
