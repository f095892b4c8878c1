from datetime import date, datetime
from pydantic import BaseModel


class TimeSlot(BaseModel):
    start: datetime
    end: datetime
    available: bool
    reason: str | None = None

    class Config:
        from_attributes = True


class AvailableDates(BaseModel):
    tutor_id: int
    duration: int
    dates: list[date]
