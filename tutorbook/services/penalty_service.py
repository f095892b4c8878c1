from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy.orm import Session

from ..core.clock import ensure_utc, utc_now
from ..core.constants import (
    LATE_CANCELLATION_LOOKBACK,
    LATE_CANCELLATION_THRESHOLD,
    PENALTY_DURATION,
)
from ..db import models
from .booking_queries import count_late_cancellations

logger = logging.getLogger(__name__)


class PenaltyPolicy(Protocol):
    def is_penalized(self, student_id: int) -> bool: ...

    def record_late_cancellation(self, student_id: int) -> None: ...


class RollingWindowPenaltyPolicy:
    """Late-cancellation policy over a rolling 30-day window.

    More than ``LATE_CANCELLATION_THRESHOLD`` late cancellations inside the
    window blocks new bookings for ``PENALTY_DURATION``. Changes are left in
    the caller's session; the caller commits them.
    """

    def __init__(self, db: Session, now: datetime | None = None) -> None:
        self.db = db
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or utc_now()

    def penalized_until(self, student_id: int) -> datetime | None:
        user = self.db.get(models.User, student_id)
        if user is None or user.penalty_until is None:
            return None
        until = ensure_utc(user.penalty_until)
        return until if until > self.now else None

    def is_penalized(self, student_id: int) -> bool:
        return self.penalized_until(student_id) is not None

    def record_late_cancellation(self, student_id: int) -> None:
        self.db.flush()
        now = self.now
        late_count = count_late_cancellations(
            self.db, student_id, since=now - LATE_CANCELLATION_LOOKBACK
        )
        if late_count <= LATE_CANCELLATION_THRESHOLD:
            return
        user = self.db.get(models.User, student_id)
        if user is None:
            return
        user.penalty_until = now + PENALTY_DURATION
        logger.warning(
            "Penalty applied for late cancellations",
            extra={
                "user_id": student_id,
                "late_cancellations": late_count,
                "penalty_until": user.penalty_until.isoformat(),
            },
        )
