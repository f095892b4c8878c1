from . import (
    bookings,
    cron,
    payments,
    tutors,
    users,
)

__all__ = [
    "bookings",
    "cron",
    "payments",
    "tutors",
    "users",
]
