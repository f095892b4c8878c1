"""Booking-domain exceptions.

Every rejection raised by the booking core is a ``BookingError`` subclass whose
message names the violated rule. ``status_code`` is the HTTP status the API
layer answers with.
"""

from __future__ import annotations


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(BookingError):
    status_code = 404


class AccessDenied(BookingError):
    status_code = 403


class PolicyViolation(BookingError):
    status_code = 403


class PreconditionFailed(BookingError):
    pass


class InvalidTime(BookingError):
    pass


class InvalidDuration(BookingError):
    pass


class NoAvailability(BookingError):
    pass


class OutsideWindow(BookingError):
    pass


class RescheduleWindowClosed(BookingError):
    pass


class Conflict(BookingError):
    status_code = 409


class InvalidTransition(BookingError):
    status_code = 409

    def __init__(self, source, target) -> None:
        source = getattr(source, "value", source)
        target = getattr(target, "value", target)
        super().__init__(f"Cannot transition booking from {source} to {target}")
        self.source = source
        self.target = target


class NoPayment(BookingError):
    pass


class RefundFailed(BookingError):
    status_code = 502


class PaymentSetupFailed(BookingError):
    status_code = 502


class BookingInternalError(BookingError):
    status_code = 500
