"""Common application-wide constants."""

from datetime import timedelta

# Allowed session lengths, in minutes
VALID_DURATIONS = (30, 60, 90)

# Advance-booking window measured from the moment of the request
MIN_ADVANCE_BOOKING = timedelta(hours=24)
MAX_ADVANCE_BOOKING = timedelta(days=90)

# Cancelling closer than this to the start counts as a late cancellation
LATE_CANCELLATION_WINDOW = timedelta(hours=12)

# Rescheduling is closed this long before the start
RESCHEDULE_CUTOFF = timedelta(hours=4)

# Late-cancellation penalty policy
LATE_CANCELLATION_LOOKBACK = timedelta(days=30)
LATE_CANCELLATION_THRESHOLD = 2
PENALTY_DURATION = timedelta(days=7)

# Step between candidate start times when listing bookable slots
SLOT_GRID_STEP = timedelta(minutes=30)

# Refund retries for transient gateway failures
REFUND_MAX_RETRIES = 3
REFUND_RETRY_DELAY_SECONDS = 1.0

# Compensating delete attempts after a failed checkout-session creation
COMPENSATION_MAX_ATTEMPTS = 3

# Checkout sessions must expire within the gateway's 24h limit
CHECKOUT_SESSION_TTL = timedelta(hours=23)

# Expiry sweep
EXPIRY_SWEEP_BATCH_SIZE = 100
EXPIRED_BOOKING_REFUND_REASON = "tutor_did_not_confirm_in_time"

# Reminder window for upcoming confirmed sessions
REMINDER_LEAD_TIME = timedelta(hours=24)
REMINDER_WINDOW = timedelta(hours=1)


__all__ = [
    "VALID_DURATIONS",
    "MIN_ADVANCE_BOOKING",
    "MAX_ADVANCE_BOOKING",
    "LATE_CANCELLATION_WINDOW",
    "RESCHEDULE_CUTOFF",
    "LATE_CANCELLATION_LOOKBACK",
    "LATE_CANCELLATION_THRESHOLD",
    "PENALTY_DURATION",
    "SLOT_GRID_STEP",
    "REFUND_MAX_RETRIES",
    "REFUND_RETRY_DELAY_SECONDS",
    "COMPENSATION_MAX_ATTEMPTS",
    "CHECKOUT_SESSION_TTL",
    "EXPIRY_SWEEP_BATCH_SIZE",
    "EXPIRED_BOOKING_REFUND_REASON",
    "REMINDER_LEAD_TIME",
    "REMINDER_WINDOW",
]
