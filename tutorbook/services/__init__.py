from . import (
    availability_service,
    booking_queries,
    booking_rules,
    booking_service,
    notification_service,
    payment_service,
    penalty_service,
    reconciliation_service,
    refund_service,
)
__all__ = [
    "availability_service",
    "booking_queries",
    "booking_rules",
    "booking_service",
    "notification_service",
    "payment_service",
    "penalty_service",
    "reconciliation_service",
    "refund_service",
]
