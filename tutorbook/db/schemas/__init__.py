from .booking import (
    Booking,
    BookingCheckout,
    BookingCreate,
    BookingPage,
    BookingReschedule,
    BookingStatusUpdate,
    Checkout,
    Refund,
    RefundCreate,
    SweepReport,
)
from .availability import AvailableDates, TimeSlot
from .user import PenaltyStatus
